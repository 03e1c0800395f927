"""HTTP client and CLI commands for the Postforge server."""
