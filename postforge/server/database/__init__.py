"""Database package for SQLite persistence."""
from postforge.server.database.connection import Database
from postforge.server.database.job_repository import JobRepository
from postforge.server.database.schedule_repository import ScheduleRepository


__all__ = ["Database", "JobRepository", "ScheduleRepository"]
