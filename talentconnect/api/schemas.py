from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from talentconnect.storage.models import AccountType

MAX_SKILLS = 20
MAX_SKILL_LENGTH = 64


def _normalize_unicode(value: str) -> str:
    """Strip zero-width and bidi override characters, then NFKC-normalize."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "VALIDATION_ERROR",
    "WEAK_PASSWORD",
    "INVALID_STATUS",
    "HAS_APPLICATIONS",
    "UNAUTHORIZED",
    "INVALID_CREDENTIALS",
    "FORBIDDEN",
    "NOT_FOUND",
    "CONFLICT",
    "USER_EXISTS",
    "RATE_LIMIT_EXCEEDED",
    "INTERNAL_SERVER_ERROR",
    "ACCOUNT_CREATION_FAILED",
})


class ErrorBody(BaseModel):
    """Error envelope body with a stable, machine-readable code."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope shared by every JSON response under /api."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class CamelModel(BaseModel):
    """Wire models use camelCase names; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_skills(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    cleaned = []
    for skill in value:
        skill = skill.strip()
        if not skill:
            raise ValueError("skills must not be blank")
        if len(skill) > MAX_SKILL_LENGTH:
            raise ValueError(f"skills must be at most {MAX_SKILL_LENGTH} characters")
        cleaned.append(skill)
    return cleaned


# auth


class ConsentsRequest(BaseModel):
    terms: bool
    privacy: bool
    marketing: Optional[bool] = None


class RegisterRequest(CamelModel):
    email: str
    password: str = Field(..., min_length=1, max_length=1024)
    user_type: AccountType
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    company_name: Optional[str] = Field(default=None, max_length=200)
    consents: ConsentsRequest

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    def profile_fields(self) -> dict:
        return self.model_dump(include={"first_name", "last_name", "company_name"})


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., max_length=1024)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class TokenRefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1, max_length=4096)


class AccountSummary(CamelModel):
    id: str
    email: str
    user_type: AccountType
    email_verified: bool


class AuthResponse(CamelModel):
    user: AccountSummary
    token: str
    refresh_token: str


class ProfessionalProfileResponse(CamelModel):
    id: str
    first_name: str
    last_name: str
    headline: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    hourly_rate: Optional[float] = None
    location: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CompanyProfileResponse(CamelModel):
    id: str
    company_name: str
    description: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    logo_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MeResponse(CamelModel):
    id: str
    email: str
    user_type: AccountType
    email_verified: bool
    last_login_at: Optional[datetime] = None
    profile: Optional[Union[ProfessionalProfileResponse, CompanyProfileResponse]] = None


class MessageResponse(BaseModel):
    message: str


# projects


class ProjectCreateRequest(CamelModel):
    title: str = Field(..., min_length=10, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    required_skills: List[str] = Field(..., min_length=1, max_length=MAX_SKILLS)
    budget_min: Optional[float] = Field(default=None, gt=0)
    budget_max: Optional[float] = Field(default=None, gt=0)
    duration_weeks: Optional[int] = Field(default=None, gt=0)
    deadline: Optional[datetime] = None
    status: Optional[Literal["draft", "open"]] = None

    @field_validator("required_skills")
    @classmethod
    def _clean_skills(cls, value: List[str]) -> List[str]:
        return _validate_skills(value)

    @model_validator(mode="after")
    def _check_budget_range(self):
        if (
            self.budget_min is not None
            and self.budget_max is not None
            and self.budget_min > self.budget_max
        ):
            raise ValueError("budgetMin must not exceed budgetMax")
        return self


class ProjectUpdateRequest(CamelModel):
    title: Optional[str] = Field(default=None, min_length=10, max_length=200)
    description: Optional[str] = Field(default=None, min_length=10, max_length=5000)
    required_skills: Optional[List[str]] = Field(default=None, min_length=1, max_length=MAX_SKILLS)
    budget_min: Optional[float] = Field(default=None, gt=0)
    budget_max: Optional[float] = Field(default=None, gt=0)
    duration_weeks: Optional[int] = Field(default=None, gt=0)
    deadline: Optional[datetime] = None
    status: Optional[Literal["draft", "open"]] = None

    @field_validator("required_skills")
    @classmethod
    def _clean_skills(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _validate_skills(value)

    @field_validator("title", "description", "required_skills", "status")
    @classmethod
    def _reject_null(cls, value):
        if value is None:
            raise ValueError("field cannot be null")
        return value

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class CompanySummary(CamelModel):
    id: str
    company_name: str
    logo_url: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


class ProjectResponse(CamelModel):
    id: str
    company_id: str
    title: str
    description: str
    required_skills: List[str]
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    duration_weeks: Optional[int] = None
    deadline: Optional[datetime] = None
    status: str
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    company: Optional[CompanySummary] = None
    application_count: int = 0


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ProjectListResponse(CamelModel):
    projects: List[ProjectResponse]
    pagination: Pagination
