"""Authentication core for the rental platform."""
