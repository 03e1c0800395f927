"""Workflow engine package."""
from postforge.server.engine.service import WorkflowEngine


__all__ = ["WorkflowEngine"]
