from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class AccountType(str, Enum):
    PROFESSIONAL = "professional"
    COMPANY = "company"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class Account:
    id: str
    email: str
    password_hash: str
    account_type: AccountType
    status: AccountStatus = AccountStatus.ACTIVE
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


@dataclass
class ProfessionalProfile:
    id: str
    account_id: str
    first_name: str
    last_name: str
    headline: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    hourly_rate: Optional[float] = None
    location: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    account_type = AccountType.PROFESSIONAL


@dataclass
class CompanyProfile:
    id: str
    account_id: str
    company_name: str
    description: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    logo_url: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    account_type = AccountType.COMPANY


Profile = Union[ProfessionalProfile, CompanyProfile]


def _build_professional_profile(account_id: str, fields: Dict[str, Any]) -> ProfessionalProfile:
    return ProfessionalProfile(
        id=new_id(),
        account_id=account_id,
        first_name=fields.get("first_name") or "",
        last_name=fields.get("last_name") or "",
        headline=fields.get("headline"),
        skills=list(fields.get("skills") or []),
        hourly_rate=fields.get("hourly_rate"),
        location=fields.get("location"),
    )


def _build_company_profile(account_id: str, fields: Dict[str, Any]) -> CompanyProfile:
    return CompanyProfile(
        id=new_id(),
        account_id=account_id,
        company_name=fields.get("company_name") or "",
        description=fields.get("description"),
        website=fields.get("website"),
        location=fields.get("location"),
        logo_url=fields.get("logo_url"),
    )


# One builder per account type; the account type alone selects the profile variant.
PROFILE_BUILDERS: Dict[AccountType, Callable[[str, Dict[str, Any]], Profile]] = {
    AccountType.PROFESSIONAL: _build_professional_profile,
    AccountType.COMPANY: _build_company_profile,
}


@dataclass(frozen=True)
class ConsentRecord:
    """Append-only audit entry of a consent decision taken at registration."""

    id: str
    account_id: str
    consent_type: str
    granted: bool
    consent_text: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        account_id: str,
        consent_type: str,
        granted: bool,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> "ConsentRecord":
        verb = "accepted" if granted else "declined"
        return cls(
            id=new_id(),
            account_id=account_id,
            consent_type=consent_type,
            granted=granted,
            consent_text=f"User {verb} {consent_type}",
            ip_address=ip_address,
            user_agent=user_agent,
        )


@dataclass
class Project:
    id: str
    company_id: str
    title: str
    description: str
    required_skills: List[str] = field(default_factory=list)
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    duration_weeks: Optional[int] = None
    deadline: Optional[datetime] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    published_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class ProjectApplication:
    id: str
    project_id: str
    professional_id: str
    status: str = "pending"
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ProjectFilter:
    """Listing filters for public project search."""

    status: ProjectStatus = ProjectStatus.OPEN
    skills: List[str] = field(default_factory=list)
    min_budget: Optional[float] = None
    max_budget: Optional[float] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
