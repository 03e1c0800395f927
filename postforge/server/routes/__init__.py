"""API route modules."""
from postforge.server.routes.cron import router as cron_router
from postforge.server.routes.health import router as health_router
from postforge.server.routes.jobs import router as jobs_router
from postforge.server.routes.schedules import router as schedules_router


__all__ = ["cron_router", "health_router", "jobs_router", "schedules_router"]
