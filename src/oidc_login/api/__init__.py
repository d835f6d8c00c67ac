"""HTTP API for the login flow."""
