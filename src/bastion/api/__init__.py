"""HTTP layer: response envelope, admission middleware and admin routes."""
