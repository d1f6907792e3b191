from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .clock import to_naive_utc


def _reject_null(value, info):
    if value is None:
        raise ValueError(f"{info.field_name} may not be null")
    return value


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python; both accepted on input.

    Every datetime is stored and compared as naive UTC, so offsets sent by
    clients (``...Z``, ``-03:00``) are converted on the way in.
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("*")
    @classmethod
    def _naive_utc(cls, v):
        if isinstance(v, datetime):
            return to_naive_utc(v)
        return v


class MessageResult(ApiModel):
    message: str


class OkResult(ApiModel):
    ok: bool = True


# ---------------- Users / Auth ----------------

Role = Literal["admin", "user"]


class UserRecord(ApiModel):
    id: int
    username: str
    password_hash: str
    email: str
    full_name: str
    role: Role = "user"
    is_active: bool = True
    must_reset_password: bool = False
    reset_token: Optional[str] = None
    reset_token_expiry: Optional[datetime] = None
    last_login: Optional[datetime] = None
    api_key: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class UserPublic(ApiModel):
    id: int
    username: str
    email: str
    full_name: str
    role: Role
    is_active: bool
    must_reset_password: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class UserCreate(ApiModel):
    username: str = Field(min_length=3)
    password_hash: str
    email: EmailStr
    full_name: str = Field(min_length=2)
    role: Role = "user"
    is_active: bool = True
    must_reset_password: bool = False
    api_key: Optional[str] = None


class InitializeRequest(ApiModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    email: EmailStr
    full_name: str = Field(min_length=2)


class UserCreateByAdmin(ApiModel):
    username: str = Field(min_length=3)
    email: EmailStr
    full_name: str = Field(min_length=2)
    role: Role = "user"


class UserUpdate(ApiModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=2)
    role: Optional[Role] = None
    is_active: Optional[bool] = None

    _no_nulls = field_validator("email", "full_name", "role", "is_active")(_reject_null)


class CreatedUser(ApiModel):
    user: UserPublic
    temporary_password: str


class LoginRequest(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class Token(ApiModel):
    access_token: str
    token_type: str = "bearer"
    user: UserPublic
    api_key: Optional[str] = None


class ApiKeyResult(ApiModel):
    api_key: str


class ResetTokenResult(ApiModel):
    reset_token: str
    expires_at: datetime


class ResetPasswordRequest(ApiModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class ChangePasswordRequest(ApiModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class SystemStatus(ApiModel):
    initialized: bool


# ---------------- Tasks ----------------


class TaskCreate(ApiModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    color: str = "#3B82F6"
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    deadline: Optional[datetime] = None
    is_active: bool = True
    source: str = "sistema"
    user_id: Optional[int] = None


class TaskUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    deadline: Optional[datetime] = None
    is_active: Optional[bool] = None
    source: Optional[str] = None

    _no_nulls = field_validator("name", "color", "is_active", "source")(_reject_null)


class Task(ApiModel):
    id: int
    name: str
    description: Optional[str] = None
    color: str
    estimated_hours: Optional[float] = None
    deadline: Optional[datetime] = None
    is_active: bool
    is_completed: bool
    completed_at: Optional[datetime] = None
    created_at: datetime
    source: str
    user_id: Optional[int] = None


# ---------------- Task items ----------------


class TaskItemCreate(ApiModel):
    task_id: int
    title: str = Field(min_length=1)
    completed: bool = False
    user_id: Optional[int] = None


class TaskItemBody(ApiModel):
    title: str = Field(min_length=1)
    completed: bool = False


class TaskItemUpdate(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1)
    completed: Optional[bool] = None

    _no_nulls = field_validator("title", "completed")(_reject_null)


class TaskItem(ApiModel):
    id: int
    task_id: int
    title: str
    completed: bool
    created_at: datetime
    user_id: Optional[int] = None


class TaskWithStats(Task):
    total_time: int = 0
    active_entries: int = 0
    items: List[TaskItem] = Field(default_factory=list)


# ---------------- Time entries ----------------


class TimeEntryCreate(ApiModel):
    task_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)
    is_running: bool = False
    notes: Optional[str] = None
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_times(self):
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("endTime must not be before startTime")
        if self.is_running and self.end_time is not None:
            raise ValueError("a running entry cannot have an endTime")
        return self


class TimeEntryUpdate(ApiModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=0)
    is_running: Optional[bool] = None
    is_archived: Optional[bool] = None
    notes: Optional[str] = None

    _no_nulls = field_validator("start_time", "is_running", "is_archived")(_reject_null)


class TimeEntry(ApiModel):
    id: int
    task_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None
    is_running: bool
    is_archived: bool = False
    notes: Optional[str] = None
    created_at: datetime
    user_id: Optional[int] = None


class TimeEntryWithTask(TimeEntry):
    task: Task


# ---------------- Timers ----------------


class StartTimerRequest(ApiModel):
    task_id: int
    notes: Optional[str] = None


class TimerActionRequest(ApiModel):
    entry_id: Optional[int] = None
    task_id: Optional[int] = None

    @model_validator(mode="after")
    def _need_target(self):
        if self.entry_id is None and self.task_id is None:
            raise ValueError("entryId or taskId is required")
        return self


class StopResult(ApiModel):
    entry: Optional[TimeEntry] = None
    duration: int
    discarded: bool = False
    message: str


# ---------------- Analytics ----------------


class DashboardStats(ApiModel):
    today_time: int = 0
    week_time: int = 0
    month_time: int = 0
    active_tasks: int = 0
    completed_tasks: int = 0
    overdue_tasks: int = 0
    over_time_tasks: int = 0
    due_today_tasks: int = 0
    due_tomorrow_tasks: int = 0
    nearing_limit_tasks: int = 0


class TimeByTask(ApiModel):
    task: Task
    total_time: int


class DailyStat(ApiModel):
    date: str
    total_time: int


class OvertimeTask(TaskWithStats):
    estimated_time: int
    exceeding_time: int


class NearingLimitTask(TaskWithStats):
    estimated_time: int
    percentage: int


# ---------------- WhatsApp ----------------

ResponseMode = Literal["individual", "group"]


class _IntegrationFields(ApiModel):
    @field_validator("api_url", check_fields=False)
    @classmethod
    def _http_url(cls, v):
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("apiUrl must be an http(s) URL")
        return v.rstrip("/") if v else v

    @field_validator("phone_number", check_fields=False)
    @classmethod
    def _phone_digits(cls, v):
        if v is not None and len("".join(ch for ch in v if ch.isdigit())) < 10:
            raise ValueError("phoneNumber must have at least 10 digits")
        return v

    @field_validator("authorized_numbers", check_fields=False)
    @classmethod
    def _strip_numbers(cls, v):
        if v is None:
            return v
        return [n.strip() for n in v if n and n.strip()]


class WhatsappIntegrationCreate(_IntegrationFields):
    instance_name: str = Field(min_length=1)
    api_url: str
    api_key: str = Field(min_length=1)
    phone_number: str
    is_active: bool = True
    webhook_url: Optional[str] = None
    authorized_numbers: Optional[List[str]] = None
    response_mode: ResponseMode = "individual"
    allowed_group_jid: Optional[str] = None


class WhatsappIntegrationUpdate(_IntegrationFields):
    instance_name: Optional[str] = Field(default=None, min_length=1)
    api_url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, min_length=1)
    phone_number: Optional[str] = None
    is_active: Optional[bool] = None
    webhook_url: Optional[str] = None
    authorized_numbers: Optional[List[str]] = None
    response_mode: Optional[ResponseMode] = None
    allowed_group_jid: Optional[str] = None

    _no_nulls = field_validator(
        "instance_name", "api_url", "api_key", "phone_number", "is_active", "response_mode"
    )(_reject_null)


class WhatsappIntegration(ApiModel):
    id: int
    instance_name: str
    api_url: str
    api_key: str
    phone_number: str
    is_active: bool
    webhook_url: Optional[str] = None
    authorized_numbers: Optional[List[str]] = None
    response_mode: ResponseMode = "individual"
    allowed_group_jid: Optional[str] = None
    last_connection: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class WhatsappLogCreate(ApiModel):
    integration_id: Optional[int] = None
    event_type: str
    phone_number: Optional[str] = None
    message: Optional[str] = None
    command: Optional[str] = None
    response: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None


class WhatsappLog(WhatsappLogCreate):
    id: int
    timestamp: datetime
