"""Pydantic schemas for request/response validation.

Field names are snake_case in Python and camelCase on the wire
(``first_name`` <-> ``firstName``); either spelling is accepted on input.
"""
from datetime import datetime, timezone
from typing import Any, Generic, Literal, Optional, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import UserRole, ProjectStatus, Priority, ProjectRole, TaskStatus


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store every timestamp as naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, ORM loading, stripped strings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )


DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Success envelope: ``{success: true, message?, data}``."""

    success: bool = True
    message: Optional[str] = None
    data: Optional[DataT] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


# ============================================================================
# User Schemas
# ============================================================================

class UserSummary(CamelModel):
    """Public identity block embedded in other resources."""

    id: UUID
    first_name: str
    last_name: str
    email: str
    avatar: Optional[str] = None


class UserResponse(UserSummary):
    """Full user profile. Never carries the password hash."""

    role: UserRole
    is_active: bool
    last_login: Optional[datetime] = None
    preferences: dict = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class PreferencesUpdate(CamelModel):
    theme: Optional[Literal["light", "dark"]] = None
    notifications: Optional[Union[bool, dict]] = None
    language: Optional[str] = Field(None, min_length=2, max_length=10)


class RegisterRequest(CamelModel):
    """Schema for registering a new account."""

    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)
    role: UserRole = UserRole.MEMBER


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(CamelModel):
    """Self-service profile update (name, avatar, preferences)."""

    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    avatar: Optional[str] = Field(None, max_length=255)
    preferences: Optional[PreferencesUpdate] = None


class PasswordChange(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=100)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=100)


class UserAdminUpdate(CamelModel):
    """Update applied through /api/users/{id}; role and is_active are admin-only."""

    first_name: Optional[str] = Field(None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    preferences: Optional[PreferencesUpdate] = None


class AuthData(BaseModel):
    user: UserResponse
    token: str


class UserData(BaseModel):
    user: UserResponse


class ResetTokenData(CamelModel):
    reset_token: Optional[str] = None


class UserListData(BaseModel):
    users: list[UserResponse]
    pagination: Pagination


class UserSearchResult(UserSummary):
    role: UserRole


class UserSearchData(BaseModel):
    users: list[UserSearchResult]


class UserStats(CamelModel):
    owned_projects: int
    member_projects: int
    total_tasks: int
    completed_tasks: int
    overdue_tasks: int
    completion_rate: int


class UserStatsData(BaseModel):
    stats: UserStats


# ============================================================================
# Project Schemas
# ============================================================================

class TeamMemberCreate(CamelModel):
    """Schema for adding a member to a project."""

    user_id: UUID
    role: ProjectRole = ProjectRole.MEMBER


class _ProjectDates(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value):
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_date_order(self):
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("End date must be after start date")
        return self


class ProjectCreate(_ProjectDates):
    """Schema for creating a new project. The caller becomes the owner."""

    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    priority: Priority = Priority.MEDIUM
    budget: float = Field(0, ge=0)
    team: list[TeamMemberCreate] = Field(default_factory=list)


class ProjectUpdate(_ProjectDates):
    """Schema for updating a project. Progress is derived and not accepted."""

    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[ProjectStatus] = None
    priority: Optional[Priority] = None
    budget: Optional[float] = Field(None, ge=0)


class ProjectMemberResponse(CamelModel):
    id: UUID
    user_id: UUID
    role: ProjectRole
    joined_at: datetime
    user: UserSummary


class TaskSummary(CamelModel):
    id: UUID
    title: str
    status: TaskStatus
    priority: Priority
    due_date: Optional[datetime] = None


class ProjectResponse(CamelModel):
    """Schema for project responses."""

    id: UUID
    name: str
    description: Optional[str] = None
    status: ProjectStatus
    priority: Priority
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    progress: int
    budget: float
    owner_id: UUID
    owner: UserSummary
    members: list[ProjectMemberResponse] = Field(default_factory=list)
    settings: dict = Field(default_factory=dict)
    metrics: dict = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ProjectDetailResponse(ProjectResponse):
    """Project with its task summaries."""

    tasks: list[TaskSummary] = Field(default_factory=list)


class ProjectData(BaseModel):
    project: ProjectResponse


class ProjectDetailData(BaseModel):
    project: ProjectDetailResponse


class ProjectListData(BaseModel):
    projects: list[ProjectResponse]
    count: int


class ProjectAnalytics(CamelModel):
    tasks_by_status: dict[str, int]
    tasks_by_priority: dict[str, int]
    overdue_tasks: int
    recent_tasks: list["TaskResponse"]
    project_progress: int


class ProjectAnalyticsData(BaseModel):
    analytics: ProjectAnalytics


# ============================================================================
# Task Schemas
# ============================================================================

class ProjectRef(CamelModel):
    id: UUID
    name: str


class TaskCreate(CamelModel):
    """Schema for creating a task inside a project."""

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    project_id: UUID
    assigned_to_id: Optional[UUID] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    estimated_hours: float = Field(0, ge=0)
    labels: list[str] = Field(default_factory=list)
    position: int = Field(0, ge=0)
    dependencies: list[UUID] = Field(default_factory=list, description="IDs of tasks this task depends on")

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return to_naive_utc(value)


class TaskUpdate(CamelModel):
    """Schema for updating a task. Only provided fields change."""

    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    assigned_to_id: Optional[UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    labels: Optional[list[str]] = None
    position: Optional[int] = Field(None, ge=0)
    dependencies: Optional[list[UUID]] = None

    @field_validator("due_date")
    @classmethod
    def normalize_due_date(cls, value):
        return to_naive_utc(value)


class CommentCreate(CamelModel):
    content: str = Field(..., min_length=1, max_length=1000)


class CommentResponse(CamelModel):
    id: UUID
    user_id: UUID
    content: str
    created_at: datetime


class TimeEntryCreate(CamelModel):
    start_time: datetime
    end_time: datetime
    description: str = Field("", max_length=500)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, value):
        return to_naive_utc(value)

    @model_validator(mode="after")
    def check_time_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("End time must be after start time")
        return self


class TimeEntryResponse(CamelModel):
    id: UUID
    user_id: UUID
    start_time: datetime
    end_time: datetime
    duration: float
    description: str
    created_at: datetime


class SubtaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=1000)


class SubtaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    completed: Optional[bool] = None


class SubtaskResponse(CamelModel):
    id: UUID
    title: str
    description: str
    completed: bool
    created_at: datetime


class ActivityResponse(CamelModel):
    id: UUID
    user_id: Optional[UUID] = None
    action: str
    details: dict = Field(default_factory=dict)
    timestamp: datetime


class AttachmentResponse(CamelModel):
    id: UUID
    filename: str
    original_name: str
    size: int
    mime_type: str
    task_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    uploaded_by_id: UUID
    uploaded_at: datetime


class TaskResponse(CamelModel):
    """Schema for task list items and mutation responses."""

    id: UUID
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: Priority
    project_id: UUID
    project: Optional[ProjectRef] = None
    assigned_to_id: Optional[UUID] = None
    assigned_to: Optional[UserSummary] = None
    created_by_id: UUID
    created_by: Optional[UserSummary] = None
    due_date: Optional[datetime] = None
    estimated_hours: float
    actual_hours: float
    labels: list[str] = Field(default_factory=list)
    position: int
    dependencies: list[UUID] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("dependencies", mode="before")
    @classmethod
    def dependency_ids(cls, value: Any):
        """Accept Task objects from the ORM relationship."""
        return [getattr(item, "id", item) for item in (value or [])]


class TaskDetailResponse(TaskResponse):
    """Task with all child collections."""

    comments: list[CommentResponse] = Field(default_factory=list)
    time_entries: list[TimeEntryResponse] = Field(default_factory=list)
    subtasks: list[SubtaskResponse] = Field(default_factory=list)
    activity: list[ActivityResponse] = Field(default_factory=list)
    attachments: list[AttachmentResponse] = Field(default_factory=list)


class TaskData(BaseModel):
    task: TaskDetailResponse


class TaskListData(BaseModel):
    tasks: list[TaskResponse]
    pagination: Pagination


class CommentData(BaseModel):
    comment: CommentResponse


class TimeEntryData(CamelModel):
    time_entry: TimeEntryResponse


class SubtaskData(BaseModel):
    subtask: SubtaskResponse


class UploadData(BaseModel):
    files: list[AttachmentResponse]


ProjectAnalytics.model_rebuild()
