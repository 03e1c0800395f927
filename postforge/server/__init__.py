"""Postforge API server."""
