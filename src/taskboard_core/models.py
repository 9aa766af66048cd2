"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Table,
    JSON,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base

# Base class for all models
Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum_column(enum_cls, **kwargs):
    """Enum column persisted by value (lowercase) instead of name."""
    return Column(Enum(enum_cls, values_callable=lambda x: [e.value for e in x]), **kwargs)


# Association table for task dependencies (many-to-many)
task_dependencies = Table(
    'task_dependencies',
    Base.metadata,
    Column('task_id', Uuid, ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
    Column('depends_on_id', Uuid, ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
    Column('created_at', DateTime, nullable=False, default=datetime.utcnow),
    CheckConstraint('task_id != depends_on_id', name='no_self_dependency'),
)


class UserRole(str, enum.Enum):
    """Global user role enum."""

    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Priority(str, enum.Enum):
    """Priority enum shared by projects and tasks."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ProjectRole(str, enum.Enum):
    """Project-scoped member role enum."""

    OWNER = "owner"
    MANAGER = "manager"
    MEMBER = "member"
    VIEWER = "viewer"


class TaskStatus(str, enum.Enum):
    """Task status enum (Kanban columns)."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


DEFAULT_PREFERENCES = {
    "theme": "light",
    "notifications": True,
    "language": "en",
}

DEFAULT_PROJECT_SETTINGS = {
    "allowComments": True,
    "allowFileUploads": True,
    "allowTimeTracking": True,
    "notifications": True,
}

DEFAULT_PROJECT_METRICS = {
    "totalTasks": 0,
    "completedTasks": 0,
    "totalHours": 0,
    "teamSize": 0,
}


class User(Base):
    """
    User model for authentication and authorship.

    Emails are stored lowercased so lookups are case-insensitive.
    The password is only ever stored as a bcrypt hash.
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = _enum_column(UserRole, nullable=False, default=UserRole.MEMBER, index=True)
    avatar = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_login = Column(DateTime, nullable=True)
    preferences = Column(JSONType, default=lambda: dict(DEFAULT_PREFERENCES))

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owned_projects = relationship("Project", back_populates="owner")
    memberships = relationship("ProjectMember", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class Project(Base):
    """
    Project model owning a set of tasks.

    Progress is derived from task completion and is only written by
    ``crud.update_project_progress``.
    """

    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    status = _enum_column(ProjectStatus, nullable=False, default=ProjectStatus.PLANNING, index=True)
    priority = _enum_column(Priority, nullable=False, default=Priority.MEDIUM, index=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    budget = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    settings = Column(JSONType, default=lambda: dict(DEFAULT_PROJECT_SETTINGS))
    metrics = Column(JSONType, default=lambda: dict(DEFAULT_PROJECT_METRICS))

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", back_populates="owned_projects")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="project")
    attachments = relationship("Attachment", back_populates="project", cascade="all, delete-orphan")

    # Constraints
    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="valid_progress"),
        CheckConstraint("budget >= 0", name="non_negative_budget"),
        CheckConstraint(
            "start_date IS NULL OR end_date IS NULL OR end_date > start_date",
            name="valid_project_dates",
        ),
    )

    def __repr__(self) -> str:
        return f"<Project {self.name} ({self.status.value})>"


class ProjectMember(Base):
    """
    Junction table linking users to projects with roles.

    The project owner is tracked on ``Project.owner_id`` and is never
    removable through this relation.
    """

    __tablename__ = "project_members"

    id = Column(Uuid, primary_key=True, default=uuid4)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = _enum_column(ProjectRole, nullable=False, default=ProjectRole.MEMBER, index=True)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember {self.role.value}>"


class Task(Base):
    """Task belonging to exactly one project.

    Comments, time entries, subtasks and activity are child tables;
    dependencies are stored in ``task_dependencies``.
    """

    __tablename__ = "tasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = _enum_column(TaskStatus, nullable=False, default=TaskStatus.TODO, index=True)
    priority = _enum_column(Priority, nullable=False, default=Priority.MEDIUM, index=True)

    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)
    assigned_to_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    created_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    due_date = Column(DateTime, nullable=True, index=True)
    estimated_hours = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    actual_hours = Column(Numeric(5, 2, asdecimal=False), nullable=False, default=0)
    labels = Column(JSONType, default=list)
    position = Column(Integer, nullable=False, default=0)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    assigned_to = relationship("User", foreign_keys=[assigned_to_id])
    created_by = relationship("User", foreign_keys=[created_by_id])

    comments = relationship(
        "TaskComment", back_populates="task", cascade="all, delete-orphan",
        order_by="TaskComment.created_at",
    )
    time_entries = relationship(
        "TaskTimeEntry", back_populates="task", cascade="all, delete-orphan",
        order_by="TaskTimeEntry.created_at",
    )
    subtasks = relationship(
        "Subtask", back_populates="task", cascade="all, delete-orphan",
        order_by="Subtask.created_at",
    )
    activity = relationship(
        "TaskActivity", back_populates="task", cascade="all, delete-orphan",
        order_by="TaskActivity.timestamp",
    )
    attachments = relationship("Attachment", back_populates="task", cascade="all, delete-orphan")

    # Forward: what this task depends on
    dependencies = relationship(
        "Task",
        secondary=task_dependencies,
        primaryjoin=id == task_dependencies.c.task_id,
        secondaryjoin=id == task_dependencies.c.depends_on_id,
        backref="dependents",  # Reverse: what depends on this task
    )

    __table_args__ = (
        CheckConstraint("estimated_hours >= 0", name="non_negative_estimate"),
        CheckConstraint("actual_hours >= 0", name="non_negative_actual"),
    )

    @property
    def dependency_ids(self) -> list:
        """Get list of dependency IDs."""
        return [dep.id for dep in self.dependencies] if self.dependencies else []

    def __repr__(self) -> str:
        return f"<Task {self.title} ({self.status.value})>"


class TaskComment(Base):
    """Append-only comment on a task."""

    __tablename__ = "task_comments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="comments")


class TaskTimeEntry(Base):
    """Append-only time entry; duration is in hours."""

    __tablename__ = "task_time_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration = Column(Numeric(10, 4, asdecimal=False), nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="time_entries")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="valid_time_range"),
    )


class Subtask(Base):
    """Checklist item on a task, patchable by id."""

    __tablename__ = "task_subtasks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="subtasks")


class TaskActivity(Base):
    """Append-only audit log entry for a task."""

    __tablename__ = "task_activity"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    action = Column(String(50), nullable=False)
    details = Column(JSONType, default=dict)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="activity")


class Attachment(Base):
    """Uploaded file attached to either a task or a project."""

    __tablename__ = "attachments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    filename = Column(String(255), nullable=False, unique=True, index=True)
    original_name = Column(String(255), nullable=False)
    path = Column(String(1024), nullable=False)
    size = Column(Integer, nullable=False)
    mime_type = Column(String(255), nullable=False)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True)
    uploaded_by_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    uploaded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="attachments")
    project = relationship("Project", back_populates="attachments")
    uploaded_by = relationship("User")

    __table_args__ = (
        CheckConstraint(
            "(task_id IS NOT NULL AND project_id IS NULL) OR (task_id IS NULL AND project_id IS NOT NULL)",
            name="single_attachment_owner",
        ),
    )

    def __repr__(self) -> str:
        return f"<Attachment {self.original_name}>"
