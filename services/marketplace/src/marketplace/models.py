from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from common.utils import clean_string_list, normalize_whitespace, now_utc
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

JOB_CATEGORIES = (
    "Cleaning",
    "Gardening",
    "Pet Care",
    "Handyman",
    "Tutoring",
    "Delivery",
    "Other",
)
JobCategory = Literal[
    "Cleaning",
    "Gardening",
    "Pet Care",
    "Handyman",
    "Tutoring",
    "Delivery",
    "Other",
]
JobStatus = Literal["active", "completed", "cancelled"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]
UserRole = Literal["customer", "provider"]

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 100
DESCRIPTION_MIN_LENGTH = 20
DESCRIPTION_MAX_LENGTH = 1000
MIN_DESCRIPTION_SENTENCES = 2
MAX_PRICE = 100_000
MAX_DEADLINE_HORIZON = timedelta(days=365)
MIN_REQUIREMENTS = 2
MAX_REQUIREMENTS = 10
MAX_TAGS = 5
MAX_SKILLS = 10
MAX_RATING = 5

SENTENCE_PATTERN = re.compile(r"\w+[.!?]")


def check_title(value: str) -> str:
    title = normalize_whitespace(value)
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        raise ValueError(
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters."
        )
    return title


def check_description(value: str) -> str:
    description = value.strip()
    if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
        raise ValueError(
            f"Description must be between {DESCRIPTION_MIN_LENGTH} and "
            f"{DESCRIPTION_MAX_LENGTH} characters."
        )
    if len(SENTENCE_PATTERN.findall(description)) < MIN_DESCRIPTION_SENTENCES:
        raise ValueError("Description must contain at least 2 sentences.")
    return description


def check_deadline(value: datetime, *, now: datetime | None = None) -> datetime:
    reference = now or now_utc()
    deadline = value if value.tzinfo else value.replace(tzinfo=UTC)
    deadline = deadline.astimezone(UTC)
    if deadline <= reference:
        raise ValueError("Deadline must be in the future.")
    if deadline > reference + MAX_DEADLINE_HORIZON:
        raise ValueError("Deadline cannot be more than 1 year in the future.")
    return deadline


def check_requirements(values: list[str]) -> list[str]:
    requirements = clean_string_list(values)
    if len(requirements) < MIN_REQUIREMENTS:
        raise ValueError(f"At least {MIN_REQUIREMENTS} requirements are required.")
    if len(requirements) > MAX_REQUIREMENTS:
        raise ValueError(f"Maximum {MAX_REQUIREMENTS} requirements allowed.")
    return requirements


def check_tags(values: list[str]) -> list[str]:
    tags = clean_string_list(values)
    if len(tags) > MAX_TAGS:
        raise ValueError(f"Maximum {MAX_TAGS} tags allowed.")
    return tags


def check_required_text(value: str) -> str:
    text = value.strip()
    if not text:
        raise ValueError("Value must not be blank.")
    return text


class JobCreateRequest(BaseModel):
    title: str
    category: JobCategory
    description: str
    details: str | None = Field(default=None, max_length=5000)
    price: float = Field(..., gt=0, le=MAX_PRICE)
    location: str = Field(..., max_length=200)
    deadline: datetime
    requirements: list[str]
    tags: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return check_title(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str) -> str:
        return check_description(value)

    @field_validator("location")
    @classmethod
    def validate_location(cls, value: str) -> str:
        return check_required_text(value)

    @field_validator("requirements")
    @classmethod
    def validate_requirements(cls, value: list[str]) -> list[str]:
        return check_requirements(value)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: list[str]) -> list[str]:
        return check_tags(value)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, value: datetime) -> datetime:
        return check_deadline(value)


class JobUpdateRequest(BaseModel):
    """Partial update of a job. Fields that are not listed here are rejected."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    category: JobCategory | None = None
    description: str | None = None
    details: str | None = Field(default=None, max_length=5000)
    price: float | None = Field(default=None, gt=0, le=MAX_PRICE)
    location: str | None = Field(default=None, max_length=200)
    deadline: datetime | None = None
    requirements: list[str] | None = None
    tags: list[str] | None = None
    status: JobStatus | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str | None) -> str | None:
        return None if value is None else check_title(value)

    @field_validator("description")
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        return None if value is None else check_description(value)

    @field_validator("location")
    @classmethod
    def validate_location(cls, value: str | None) -> str | None:
        return None if value is None else check_required_text(value)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, value: datetime | None) -> datetime | None:
        return None if value is None else check_deadline(value)

    @field_validator("requirements")
    @classmethod
    def validate_requirements(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else check_requirements(value)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else check_tags(value)

    @model_validator(mode="after")
    def reject_nulls(self) -> JobUpdateRequest:
        for name in self.model_fields_set:
            if name != "details" and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null.")
        return self

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class ApplicationDecisionRequest(BaseModel):
    status: Literal["accepted", "rejected"]


class ReviewRequest(BaseModel):
    rating: float = Field(..., ge=0, le=MAX_RATING)
    comment: str | None = Field(default=None, max_length=1000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class UserRegisterRequest(BaseModel):
    name: str = Field(..., max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    phone: str = Field(..., max_length=30)
    address: str = Field(..., max_length=200)
    role: UserRole = "customer"
    bio: str | None = Field(default=None, max_length=500)
    avatar: str = Field(default="", max_length=500)
    skills: list[str] = Field(default_factory=list)

    @field_validator("name", "phone", "address")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return check_required_text(value)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("skills")
    @classmethod
    def validate_skills(cls, value: list[str]) -> list[str]:
        skills = clean_string_list(value)
        if len(skills) > MAX_SKILLS:
            raise ValueError(f"Maximum {MAX_SKILLS} skills allowed.")
        return skills


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.strip().lower()


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    address: str | None = Field(default=None, max_length=200)
    bio: str | None = Field(default=None, max_length=500)
    avatar: str | None = Field(default=None, max_length=500)
    skills: list[str] | None = None

    @field_validator("name", "phone", "address")
    @classmethod
    def validate_required_text(cls, value: str | None) -> str | None:
        return None if value is None else check_required_text(value)

    @field_validator("skills")
    @classmethod
    def validate_skills(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        skills = clean_string_list(value)
        if len(skills) > MAX_SKILLS:
            raise ValueError(f"Maximum {MAX_SKILLS} skills allowed.")
        return skills

    @model_validator(mode="after")
    def reject_nulls(self) -> ProfileUpdateRequest:
        for name in ("name", "phone", "address", "skills"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null.")
        return self

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class UserSummary(BaseModel):
    id: str
    name: str
    avatar: str = ""
    rating: float = 0.0


class ReviewerSummary(BaseModel):
    id: str
    name: str
    avatar: str = ""


class ApplicationView(BaseModel):
    applicant: UserSummary
    status: ApplicationStatus
    applied_at: str


class ReviewView(BaseModel):
    reviewer: ReviewerSummary
    rating: float
    comment: str | None = None
    reviewed_at: str


class JobView(BaseModel):
    id: str
    title: str
    category: JobCategory
    description: str
    details: str | None = None
    price: float
    location: str
    deadline: str
    requirements: list[str]
    tags: list[str]
    status: JobStatus
    owner: UserSummary
    applications: list[ApplicationView] = Field(default_factory=list)
    reviews: list[ReviewView] = Field(default_factory=list)
    rating: float = 0.0
    created_at: str
    updated_at: str


class JobListResponse(BaseModel):
    jobs: list[JobView]
    total_jobs: int
    total_pages: int
    current_page: int
    page_size: int


class PublicUserProfile(BaseModel):
    id: str
    name: str
    role: UserRole
    bio: str | None = None
    avatar: str = ""
    skills: list[str] = Field(default_factory=list)
    rating: float = 0.0
    reviews: list[ReviewView] = Field(default_factory=list)
    jobs_posted: list[str] = Field(default_factory=list)
    created_at: str


class UserProfile(PublicUserProfile):
    email: str
    phone: str
    address: str
    jobs_applied: list[str] = Field(default_factory=list)
    updated_at: str


class LoginResponse(BaseModel):
    token: str
    expires_at: str
    user: UserProfile


class AuthIdentity(BaseModel):
    user_id: str
    role: UserRole
    token_id: str


class AuditEvent(BaseModel):
    event_id: int
    request_id: str | None = None
    occurred_at: str
    method: str
    path: str
    action: str
    source_ip: str | None = None
    user_agent: str | None = None
    actor_id: str | None = None
    status: str
    message: str | None = None
