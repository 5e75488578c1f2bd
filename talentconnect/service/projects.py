from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from talentconnect.logging import get_logger
from talentconnect.service.auth import Principal
from talentconnect.service.errors import (
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from talentconnect.storage.errors import ConstraintViolation
from talentconnect.storage.models import (
    CompanyProfile,
    Project,
    ProjectFilter,
    ProjectStatus,
    new_id,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProjectView:
    """A project together with its owning company and application count."""

    project: Project
    company: Optional[CompanyProfile]
    application_count: int = 0


class ProjectService:
    """Company-owned project listings."""

    def __init__(self, store) -> None:
        self.store = store

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _view(self, project: Project) -> ProjectView:
        company = await asyncio.to_thread(self.store.get_company_profile, project.company_id)
        count = await asyncio.to_thread(self.store.count_applications, project.id)
        return ProjectView(project=project, company=company, application_count=count)

    async def _company_for(self, principal: Principal) -> CompanyProfile:
        profile = await asyncio.to_thread(self.store.get_profile, principal.account_id)
        if not isinstance(profile, CompanyProfile):
            raise NotFoundError("Company profile not found")
        return profile

    async def _owned_project(self, principal: Principal, project_id: str, action: str) -> Project:
        project = await asyncio.to_thread(self.store.get_project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        profile = await asyncio.to_thread(self.store.get_profile, principal.account_id)
        if not isinstance(profile, CompanyProfile) or profile.id != project.company_id:
            logger.warning(
                "project_access_denied",
                project_id=project_id,
                account_id=principal.account_id,
                action=action,
            )
            raise ForbiddenError(f"You do not have permission to {action} this project")
        return project

    async def create(self, principal: Principal, fields: Mapping[str, Any]) -> ProjectView:
        company = await self._company_for(principal)
        status = ProjectStatus(fields.get("status") or ProjectStatus.DRAFT)
        if status not in (ProjectStatus.DRAFT, ProjectStatus.OPEN):
            raise ValidationError("New projects must be draft or open")
        now = self._now()
        project = Project(
            id=new_id(),
            company_id=company.id,
            title=fields["title"],
            description=fields["description"],
            required_skills=list(fields["required_skills"]),
            budget_min=fields.get("budget_min"),
            budget_max=fields.get("budget_max"),
            duration_weeks=fields.get("duration_weeks"),
            deadline=fields.get("deadline"),
            status=status,
            published_at=now if status == ProjectStatus.OPEN else None,
            created_at=now,
            updated_at=now,
        )
        try:
            await asyncio.to_thread(self.store.create_project, project)
        except ConstraintViolation as exc:
            raise NotFoundError("Company profile not found", detail=exc.detail) from exc
        logger.info(
            "project_created",
            project_id=project.id,
            company_id=company.id,
            status=status.value,
        )
        return ProjectView(project=project, company=company, application_count=0)

    async def list_projects(self, filters: ProjectFilter) -> Tuple[List[ProjectView], int]:
        projects, total = await asyncio.to_thread(self.store.list_projects, filters)
        views = [await self._view(project) for project in projects]
        return views, total

    async def get(self, project_id: str) -> ProjectView:
        project = await asyncio.to_thread(self.store.get_project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        return await self._view(project)

    async def update(
        self, principal: Principal, project_id: str, updates: Mapping[str, Any]
    ) -> ProjectView:
        project = await self._owned_project(principal, project_id, "update")
        changes: Dict[str, Any] = dict(updates)
        if "status" in changes:
            status = ProjectStatus(changes["status"])
            changes["status"] = status
            if status == ProjectStatus.OPEN and project.published_at is None:
                changes["published_at"] = self._now()
        if not changes:
            return await self._view(project)
        updated = await asyncio.to_thread(self.store.update_project, project.id, **changes)
        logger.info("project_updated", project_id=project.id, fields=sorted(changes))
        return await self._view(updated)

    async def publish(self, principal: Principal, project_id: str) -> ProjectView:
        project = await self._owned_project(principal, project_id, "publish")
        if project.status != ProjectStatus.DRAFT:
            raise ValidationError(
                "Only draft projects can be published", error_code="INVALID_STATUS"
            )
        updated = await asyncio.to_thread(
            self.store.update_project,
            project.id,
            status=ProjectStatus.OPEN,
            published_at=self._now(),
        )
        logger.info("project_published", project_id=project.id)
        return await self._view(updated)

    async def delete(self, principal: Principal, project_id: str) -> None:
        project = await self._owned_project(principal, project_id, "delete")
        applications = await asyncio.to_thread(self.store.count_applications, project.id)
        if applications > 0:
            raise ValidationError(
                "Cannot delete project with applications", error_code="HAS_APPLICATIONS"
            )
        try:
            await asyncio.to_thread(self.store.delete_project, project.id)
        except ConstraintViolation:
            # an application arrived after the count
            raise ValidationError(
                "Cannot delete project with applications", error_code="HAS_APPLICATIONS"
            ) from None
        logger.info("project_deleted", project_id=project.id)
