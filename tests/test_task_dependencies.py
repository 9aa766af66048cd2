"""Tests for task dependency validation."""
from uuid import uuid4

import pytest

from taskboard_core import crud, schemas
from taskboard_core.errors import ValidationError
from taskboard_core.task_dependencies import (
    CircularDependencyError,
    detect_circular_dependency,
    get_tasks_blocked_by,
    get_transitive_dependencies,
    validate_dependencies,
)


@pytest.fixture
def chain(db, make_user, make_project, make_task):
    """Project with tasks a <- b <- c (c depends on b, b depends on a)."""
    owner = make_user()
    project = make_project(owner)
    a = make_task(project, owner, title="Task A")
    b = make_task(project, owner, title="Task B")
    c = make_task(project, owner, title="Task C")
    b.dependencies = [a]
    c.dependencies = [b]
    db.commit()
    return owner, project, a, b, c


class TestTransitiveDependencies:
    """Test graph traversal."""

    def test_walks_the_chain(self, db, chain):
        _, _, a, b, c = chain
        assert get_transitive_dependencies(db, c.id) == {a.id, b.id, c.id}
        assert get_transitive_dependencies(db, a.id) == {a.id}

    def test_max_depth_stops_traversal(self, db, chain):
        _, _, a, b, c = chain
        assert get_transitive_dependencies(db, c.id, max_depth=1) == {c.id}

    def test_blocked_by(self, db, chain):
        _, _, a, b, _ = chain
        assert [t.id for t in get_tasks_blocked_by(db, a.id)] == [b.id]


class TestCycleDetection:
    """Test circular dependency detection."""

    def test_closing_the_loop_is_a_cycle(self, db, chain):
        _, _, a, _, c = chain
        assert detect_circular_dependency(db, a.id, [c.id]) == [a.id, c.id, a.id]

    def test_self_reference_is_a_cycle(self, db, chain):
        _, _, a, _, _ = chain
        assert detect_circular_dependency(db, a.id, [a.id]) == [a.id, a.id]

    def test_no_cycle(self, db, chain):
        _, _, a, _, c = chain
        assert detect_circular_dependency(db, c.id, [a.id]) is None


class TestValidateDependencies:
    """Test validation run on task create/update."""

    def test_valid_list_is_deduplicated(self, db, chain):
        _, project, a, b, c = chain
        tasks = validate_dependencies(db, c.id, [a.id, b.id, a.id], project.id)
        assert [t.id for t in tasks] == [a.id, b.id]

    def test_self_dependency(self, db, chain):
        _, project, a, _, _ = chain
        with pytest.raises(ValidationError) as exc_info:
            validate_dependencies(db, a.id, [a.id], project.id)
        assert "itself" in exc_info.value.message

    def test_unknown_dependency(self, db, chain):
        _, project, a, _, _ = chain
        with pytest.raises(ValidationError) as exc_info:
            validate_dependencies(db, a.id, [uuid4()], project.id)
        assert "not found" in exc_info.value.message

    def test_cross_project_dependency(self, db, chain, make_project, make_task):
        owner, project, a, _, _ = chain
        other = make_task(make_project(owner, name="Other"), owner, title="Elsewhere")

        with pytest.raises(ValidationError) as exc_info:
            validate_dependencies(db, a.id, [other.id], project.id)
        assert "different project" in exc_info.value.message

    def test_cycle_rejected(self, db, chain):
        _, project, a, _, c = chain
        with pytest.raises(CircularDependencyError) as exc_info:
            validate_dependencies(db, a.id, [c.id], project.id)
        assert exc_info.value.status_code == 400

    def test_new_task_skips_cycle_check(self, db, chain):
        _, project, a, _, c = chain
        assert len(validate_dependencies(db, None, [a.id, c.id], project.id)) == 2


class TestDependenciesThroughTasks:
    """Test dependencies set through the task operations."""

    def test_update_task_dependencies(self, db, chain):
        owner, _, a, _, c = chain
        task = crud.update_task(db, c, schemas.TaskUpdate(dependencies=[a.id]), owner.id)
        assert task.dependency_ids == [a.id]

    def test_update_task_cycle_rejected(self, db, chain):
        owner, _, a, _, c = chain
        with pytest.raises(CircularDependencyError):
            crud.update_task(db, a, schemas.TaskUpdate(dependencies=[c.id]), owner.id)

    def test_deleting_a_dependency_unlinks_it(self, db, chain):
        _, _, a, b, _ = chain
        crud.delete_task(db, a)
        db.refresh(b)
        assert b.dependency_ids == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
