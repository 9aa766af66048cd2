"""Dependency validation and query logic for task dependencies."""
import logging
from typing import Optional, Set
from uuid import UUID

from sqlalchemy.orm import Session

from . import models
from .errors import ValidationError

logger = logging.getLogger("taskboard-core.task-dependencies")


class CircularDependencyError(ValidationError):
    """Raised when a circular dependency is detected."""

    default_message = "Circular dependency detected"


def get_transitive_dependencies(
    db: Session,
    task_id: UUID,
    visited: Optional[Set[UUID]] = None,
    depth: int = 0,
    max_depth: int = 50
) -> Set[UUID]:
    """
    Get all transitive dependencies of a task (recursive).

    Args:
        db: Database session
        task_id: Starting task ID
        visited: Set of already visited IDs (prevents infinite loops)
        depth: Current recursion depth
        max_depth: Maximum recursion depth (default: 50)

    Returns:
        Set of task IDs reachable from task_id, including task_id itself
    """
    if visited is None:
        visited = set()

    if depth >= max_depth:
        logger.warning(f"Maximum dependency depth ({max_depth}) reached for task {task_id}")
        return visited

    if task_id in visited:
        return visited

    visited.add(task_id)

    dependencies = (
        db.query(models.task_dependencies.c.depends_on_id)
        .filter(models.task_dependencies.c.task_id == task_id)
        .all()
    )

    for (dep_id,) in dependencies:
        if dep_id not in visited:
            get_transitive_dependencies(db, dep_id, visited, depth + 1, max_depth)

    return visited


def detect_circular_dependency(
    db: Session,
    task_id: UUID,
    new_dependencies: list[UUID],
) -> Optional[list[UUID]]:
    """
    Detect if giving task_id these dependencies would create a cycle.

    Returns:
        List representing the cycle path if found, None otherwise
    """
    if task_id in new_dependencies:
        return [task_id, task_id]

    for dep_id in new_dependencies:
        if task_id in get_transitive_dependencies(db, dep_id, set()):
            return [task_id, dep_id, task_id]

    return None


def validate_dependencies(
    db: Session,
    task_id: Optional[UUID],
    dependency_ids: list[UUID],
    project_id: UUID
) -> list[models.Task]:
    """
    Validate a task's dependency list and resolve it to Task rows.

    Checks:
    1. No self-dependencies
    2. All dependency IDs exist and are in the same project
    3. No circular dependencies (skipped for tasks not yet persisted)

    Args:
        db: Database session
        task_id: The task being updated, or None for a new task
        dependency_ids: Dependency IDs to validate
        project_id: Project the task belongs to

    Returns:
        The dependency Task rows, de-duplicated, in request order

    Raises:
        ValidationError: If any check fails
    """
    unique_ids = list(dict.fromkeys(dependency_ids))

    if task_id is not None and task_id in unique_ids:
        raise ValidationError("Task cannot depend on itself")

    tasks = []
    for dep_id in unique_ids:
        dep = db.query(models.Task).filter(models.Task.id == dep_id).first()
        if not dep:
            raise ValidationError(f"Dependency {dep_id} not found")
        if dep.project_id != project_id:
            raise ValidationError(f"Dependency {dep_id} is in a different project")
        tasks.append(dep)

    if task_id is not None:
        cycle = detect_circular_dependency(db, task_id, unique_ids)
        if cycle:
            cycle_str = " -> ".join(str(id) for id in cycle)
            raise CircularDependencyError(f"Circular dependency detected: {cycle_str}")

    return tasks


def get_tasks_blocked_by(db: Session, task_id: UUID) -> list[models.Task]:
    """Get tasks that directly depend on the specified task."""
    return (
        db.query(models.Task)
        .join(
            models.task_dependencies,
            models.Task.id == models.task_dependencies.c.task_id
        )
        .filter(models.task_dependencies.c.depends_on_id == task_id)
        .all()
    )
