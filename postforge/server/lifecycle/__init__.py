"""Server lifecycle components."""
from postforge.server.lifecycle.schedule_ticker import ScheduleTicker


__all__ = ["ScheduleTicker"]
