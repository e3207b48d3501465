"""Service layer: auth flows, token and one-time code engines, email delivery."""
