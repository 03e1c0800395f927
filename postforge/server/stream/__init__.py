"""Live progress feed."""
from postforge.server.stream.feed import ProgressFeed


__all__ = ["ProgressFeed"]
