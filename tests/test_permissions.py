"""
Tests for project and task access checks.
"""
from uuid import uuid4

import pytest

from taskboard_core import models, permissions
from taskboard_core.config import get_settings
from taskboard_core.errors import (
    AccessDenied,
    Forbidden,
    ProjectNotFound,
    TaskNotFound,
    Unauthenticated,
)


class TestProjectAccess:
    """Test membership-based project access."""

    def test_owner_has_owner_role(self, db, make_user, make_project):
        owner = make_user()
        project = make_project(owner)

        access = permissions.check_project_access(db, owner.id, project.id)

        assert access.project.id == project.id
        assert access.role == "owner"
        assert access.can_edit

    def test_member_has_member_role(self, db, make_user, make_project):
        owner, member = make_user(), make_user()
        project = make_project(owner, members=[(member, models.ProjectRole.MEMBER)])

        access = permissions.check_project_access(db, member.id, project.id)

        assert access.role == "member"
        assert not access.can_edit

    def test_non_member_denied(self, db, make_user, make_project):
        """Test that a stranger is refused even for read access."""
        owner, stranger = make_user(), make_user()
        project = make_project(owner)

        with pytest.raises(AccessDenied) as exc_info:
            permissions.check_project_access(db, stranger.id, project.id)
        assert exc_info.value.status_code == 403

    def test_missing_project(self, db, make_user):
        with pytest.raises(ProjectNotFound):
            permissions.check_project_access(db, make_user().id, uuid4())

    def test_stored_manager_role_ignored_by_default(self, db, make_user, make_project):
        """Test that membership roles do not grant edit rights unless enabled."""
        owner, manager = make_user(), make_user()
        project = make_project(owner, members=[(manager, models.ProjectRole.MANAGER)])

        assert permissions.check_project_access(db, manager.id, project.id).role == "member"
        with pytest.raises(AccessDenied):
            permissions.check_project_edit_access(db, manager.id, project.id)

    def test_stored_manager_role_honored_when_enabled(self, db, make_user, make_project, monkeypatch):
        owner, manager, viewer = make_user(), make_user(), make_user()
        project = make_project(
            owner,
            members=[(manager, models.ProjectRole.MANAGER), (viewer, models.ProjectRole.VIEWER)],
        )
        monkeypatch.setattr(get_settings(), "honor_member_roles", True)

        access = permissions.check_project_edit_access(db, manager.id, project.id)
        assert access.role == "manager"
        with pytest.raises(AccessDenied):
            permissions.check_project_edit_access(db, viewer.id, project.id)

    def test_access_follows_current_membership(self, db, make_user, make_project):
        """Test that removing a membership revokes access immediately."""
        owner, member = make_user(), make_user()
        project = make_project(owner, members=[(member, models.ProjectRole.MEMBER)])
        permissions.check_project_access(db, member.id, project.id)

        db.query(models.ProjectMember).filter(models.ProjectMember.user_id == member.id).delete()
        db.commit()

        with pytest.raises(AccessDenied):
            permissions.check_project_access(db, member.id, project.id)


class TestTaskAccess:
    """Test creator/assignee/editor task access."""

    def test_creator_and_assignee_allowed(self, db, make_user, make_project, make_task):
        owner, creator, assignee = make_user(), make_user(), make_user()
        project = make_project(
            owner,
            members=[(creator, models.ProjectRole.MEMBER), (assignee, models.ProjectRole.MEMBER)],
        )
        task = make_task(project, creator, assignee=assignee)

        assert permissions.check_task_access(db, creator.id, task.id).can_edit
        assert permissions.check_task_access(db, assignee.id, task.id).can_edit

    def test_owner_allowed_on_any_task(self, db, make_user, make_project, make_task):
        owner, creator = make_user(), make_user()
        project = make_project(owner, members=[(creator, models.ProjectRole.MEMBER)])
        task = make_task(project, creator)

        access = permissions.check_task_access(db, owner.id, task.id)
        assert access.project_access.role == "owner"

    def test_unrelated_member_denied(self, db, make_user, make_project, make_task):
        """Test that a plain member cannot touch someone else's task."""
        owner, creator, other = make_user(), make_user(), make_user()
        project = make_project(
            owner,
            members=[(creator, models.ProjectRole.MEMBER), (other, models.ProjectRole.MEMBER)],
        )
        task = make_task(project, creator)

        with pytest.raises(AccessDenied):
            permissions.check_task_access(db, other.id, task.id)

    def test_creator_who_left_project_denied(self, db, make_user, make_project, make_task):
        """Test that project access is required before task relations count."""
        owner, creator = make_user(), make_user()
        project = make_project(owner, members=[(creator, models.ProjectRole.MEMBER)])
        task = make_task(project, creator)

        db.query(models.ProjectMember).filter(models.ProjectMember.user_id == creator.id).delete()
        db.commit()

        with pytest.raises(AccessDenied):
            permissions.check_task_access(db, creator.id, task.id)

    def test_missing_task(self, db, make_user):
        with pytest.raises(TaskNotFound):
            permissions.check_task_access(db, make_user().id, uuid4())


class TestRequireRole:
    """Test global role gating."""

    def test_allowed_role(self, make_user):
        admin = make_user(role=models.UserRole.ADMIN)
        assert permissions.require_role(admin, [models.UserRole.ADMIN]) is admin

    def test_role_given_as_string(self, make_user):
        manager = make_user(role=models.UserRole.MANAGER)
        assert permissions.require_role(manager, ["admin", "manager"]) is manager

    def test_disallowed_role(self, make_user):
        member = make_user()
        with pytest.raises(Forbidden) as exc_info:
            permissions.require_role(member, [models.UserRole.ADMIN])
        assert exc_info.value.status_code == 403
        assert "member" in exc_info.value.message

    def test_no_user(self):
        with pytest.raises(Unauthenticated):
            permissions.require_role(None, [models.UserRole.ADMIN])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
