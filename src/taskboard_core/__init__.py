"""Taskboard Core - project and task management API.

Modules:
- models / crud: relational domain store (users, projects, members, tasks)
- identity / security: credentials, password hashing and JWT handling
- permissions: project and task access checks
- relay: Socket.IO real-time relay for project rooms
- api: FastAPI application and routers
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
