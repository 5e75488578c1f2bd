from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from talentconnect.logging import get_logger
from talentconnect.storage.errors import ConstraintViolation, RecordNotFound
from talentconnect.storage.models import (
    Account,
    CompanyProfile,
    ConsentRecord,
    Profile,
    Project,
    ProjectApplication,
    ProjectFilter,
)

_PROJECT_UPDATABLE = frozenset(
    {
        "title",
        "description",
        "required_skills",
        "budget_min",
        "budget_max",
        "duration_weeks",
        "deadline",
        "status",
        "published_at",
    }
)


class MemoryStore:
    """In-process store for development and tests.

    Multi-record writes are staged on copies and swapped in under a single
    lock acquisition, so readers never observe a partially provisioned account.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self.profiles: Dict[str, Profile] = {}
        self.consents: List[ConsentRecord] = []
        self.projects: Dict[str, Project] = {}
        self.applications: List[ProjectApplication] = []
        # RLock so helpers can re-enter while a write holds the lock
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def close(self) -> None:
        return None

    # accounts
    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            return self.accounts.get(account_id)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._data_lock:
            return next(
                (a for a in self.accounts.values() if a.email == email), None
            )

    def provision_account(
        self,
        account: Account,
        profile: Profile,
        consents: Sequence[ConsentRecord],
    ) -> Account:
        with self._data_lock:
            if any(existing.email == account.email for existing in self.accounts.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            accounts = dict(self.accounts)
            profiles = dict(self.profiles)
            consent_log = list(self.consents)

            accounts[account.id] = account
            self._stage_profile(profiles, account, profile)
            self._stage_consents(consent_log, account, consents)

            self.accounts, self.profiles, self.consents = accounts, profiles, consent_log
        self.logger.debug(
            "memory_account_provisioned",
            account_id=account.id,
            consent_count=len(consents),
        )
        return account

    def _stage_profile(
        self, profiles: Dict[str, Profile], account: Account, profile: Profile
    ) -> None:
        if profile.account_id != account.id:
            raise ValueError("profile does not belong to the account being created")
        if profile.account_type != account.account_type:
            raise ValueError(
                f"{account.account_type.value} account cannot own a "
                f"{profile.account_type.value} profile"
            )
        profiles[account.id] = profile

    def _stage_consents(
        self,
        consent_log: List[ConsentRecord],
        account: Account,
        consents: Sequence[ConsentRecord],
    ) -> None:
        for record in consents:
            if record.account_id != account.id:
                raise ValueError("consent does not belong to the account being created")
            consent_log.append(record)

    def record_login(self, account_id: str, when: datetime) -> Optional[Account]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            updated = replace(account, last_login_at=when, updated_at=when)
            self.accounts[account_id] = updated
            return updated

    def get_profile(self, account_id: str) -> Optional[Profile]:
        with self._data_lock:
            return self.profiles.get(account_id)

    def get_company_profile(self, profile_id: str) -> Optional[CompanyProfile]:
        with self._data_lock:
            return next(
                (
                    p
                    for p in self.profiles.values()
                    if isinstance(p, CompanyProfile) and p.id == profile_id
                ),
                None,
            )

    def list_consents(self, account_id: str) -> List[ConsentRecord]:
        with self._data_lock:
            return [c for c in self.consents if c.account_id == account_id]

    # projects
    def create_project(self, project: Project) -> Project:
        with self._data_lock:
            if project.id in self.projects:
                raise ConstraintViolation("project already exists", {"field": "id"})
            if self.get_company_profile(project.company_id) is None:
                raise ConstraintViolation(
                    "company profile does not exist", {"field": "company_id"}
                )
            self.projects[project.id] = project
            return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._data_lock:
            return self.projects.get(project_id)

    def list_projects(self, filters: ProjectFilter) -> Tuple[List[Project], int]:
        with self._data_lock:
            matched = [p for p in self.projects.values() if _matches(p, filters)]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        matched.sort(key=lambda p: p.published_at or epoch, reverse=True)
        total = len(matched)
        return matched[filters.offset : filters.offset + filters.limit], total

    def update_project(self, project_id: str, **updates: Any) -> Project:
        unknown = set(updates) - _PROJECT_UPDATABLE
        if unknown:
            raise ValueError(f"unsupported project fields: {', '.join(sorted(unknown))}")
        with self._data_lock:
            project = self.projects.get(project_id)
            if not project:
                raise RecordNotFound("project", project_id)
            updated = replace(project, updated_at=datetime.now(timezone.utc), **updates)
            self.projects[project_id] = updated
            return updated

    def delete_project(self, project_id: str) -> None:
        with self._data_lock:
            if project_id not in self.projects:
                raise RecordNotFound("project", project_id)
            if any(a.project_id == project_id for a in self.applications):
                raise ConstraintViolation(
                    "project has applications", {"field": "project_id"}
                )
            del self.projects[project_id]

    def add_application(self, application: ProjectApplication) -> ProjectApplication:
        with self._data_lock:
            if application.project_id not in self.projects:
                raise ConstraintViolation("project does not exist", {"field": "project_id"})
            self.applications.append(application)
            return application

    def count_applications(self, project_id: str) -> int:
        with self._data_lock:
            return sum(1 for a in self.applications if a.project_id == project_id)


def _matches(project: Project, filters: ProjectFilter) -> bool:
    if project.status != filters.status:
        return False
    if filters.skills:
        if not set(filters.skills).issubset(project.required_skills):
            return False
    if filters.min_budget is not None:
        if project.budget_max is None or project.budget_max < filters.min_budget:
            return False
    if filters.max_budget is not None:
        if project.budget_min is None or project.budget_min > filters.max_budget:
            return False
    if filters.search:
        needle = filters.search.lower()
        if needle not in project.title.lower() and needle not in project.description.lower():
            return False
    return True
