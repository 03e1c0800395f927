"""Recurring schedule processing."""
