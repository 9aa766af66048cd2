"""API routers for Taskboard Core."""

from . import auth, projects, tasks, users, uploads

__all__ = ["auth", "projects", "tasks", "users", "uploads"]
