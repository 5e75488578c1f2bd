from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Request, Response
from pydantic import BaseModel

from talentconnect.api.schemas import (
    AccountSummary,
    AuthResponse,
    CompanyProfileResponse,
    CompanySummary,
    Envelope,
    LoginRequest,
    MeResponse,
    MessageResponse,
    Pagination,
    ProfessionalProfileResponse,
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdateRequest,
    RegisterRequest,
    TokenRefreshRequest,
)
from talentconnect.logging import get_correlation_id, get_logger
from talentconnect.service.auth import Principal, TokenPair
from talentconnect.service.errors import AuthenticationError, ForbiddenError
from talentconnect.service.projects import ProjectView
from talentconnect.service.rate_limit import RateLimitDecision
from talentconnect.service.runtime import Runtime
from talentconnect.storage.models import (
    Account,
    AccountType,
    CompanyProfile,
    ProfessionalProfile,
    Profile,
    ProjectFilter,
    ProjectStatus,
)

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
projects_router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def client_id(request: Request) -> str:
    """Identity used to key rate-limit counters: the peer address."""
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining", "reset_seconds")

    def __init__(self, limit: int, remaining: int, reset_seconds: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_seconds = reset_seconds

    @classmethod
    def from_decision(cls, decision: RateLimitDecision) -> "RateLimitInfo":
        return cls(decision.limit, decision.remaining, decision.reset_seconds)

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))
        response.headers["X-RateLimit-Reset"] = str(self.reset_seconds)


async def _enforce_rate_limit(
    runtime: Runtime, scope: str, request: Request, response: Optional[Response] = None
) -> RateLimitInfo:
    """Count this request against ``scope`` and raise 429 once over the ceiling.

    Raises:
        RateLimitedError: when the client has used up the current window.
    """
    decision = await runtime.rate_limiter.enforce(scope, client_id(request))
    info = RateLimitInfo.from_decision(decision)
    if response is not None:
        info.apply_headers(response)
    return info


async def get_principal(
    request: Request, authorization: Optional[str] = Header(None)
) -> Principal:
    runtime = get_runtime(request)
    return await runtime.auth.authenticate(authorization)


def require_account_type(*allowed: AccountType):
    """Dependency admitting only principals of the given account types."""

    async def _require(principal: Optional[Principal] = Depends(get_principal)) -> Principal:
        if principal is None:
            raise AuthenticationError("Authentication required")
        if principal.account_type not in allowed:
            logger.warning(
                "account_type_forbidden",
                account_id=principal.account_id,
                account_type=principal.account_type.value,
                allowed=[a.value for a in allowed],
            )
            raise ForbiddenError("Insufficient permissions")
        return principal

    return _require


def _ok(model: BaseModel) -> Envelope:
    envelope = Envelope(status="ok", data=model.model_dump(by_alias=True, mode="json"))
    request_id = get_correlation_id()
    if request_id:
        envelope.request_id = request_id
    return envelope


def _account_summary(account: Account) -> AccountSummary:
    return AccountSummary(
        id=account.id,
        email=account.email,
        user_type=account.account_type,
        email_verified=account.email_verified,
    )


def _auth_response(account: Account, tokens: TokenPair) -> AuthResponse:
    return AuthResponse(
        user=_account_summary(account),
        token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


def _profile_response(profile: Optional[Profile]):
    if isinstance(profile, ProfessionalProfile):
        return ProfessionalProfileResponse(
            id=profile.id,
            first_name=profile.first_name,
            last_name=profile.last_name,
            headline=profile.headline,
            skills=profile.skills,
            hourly_rate=profile.hourly_rate,
            location=profile.location,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )
    if isinstance(profile, CompanyProfile):
        return CompanyProfileResponse(
            id=profile.id,
            company_name=profile.company_name,
            description=profile.description,
            website=profile.website,
            location=profile.location,
            logo_url=profile.logo_url,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )
    return None


def _project_response(view: ProjectView) -> ProjectResponse:
    project = view.project
    company = None
    if view.company is not None:
        company = CompanySummary(
            id=view.company.id,
            company_name=view.company.company_name,
            logo_url=view.company.logo_url,
            location=view.company.location,
            description=view.company.description,
        )
    return ProjectResponse(
        id=project.id,
        company_id=project.company_id,
        title=project.title,
        description=project.description,
        required_skills=project.required_skills,
        budget_min=project.budget_min,
        budget_max=project.budget_max,
        duration_weeks=project.duration_weeks,
        deadline=project.deadline,
        status=project.status.value,
        published_at=project.published_at,
        created_at=project.created_at,
        updated_at=project.updated_at,
        company=company,
        application_count=view.application_count,
    )


# auth


@auth_router.post("/register", response_model=Envelope, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    user_agent: Optional[str] = Header(None),
):
    """Create an account with its profile and consent records.

    Raises:
        400: weak password or invalid payload
        409: email already registered
        429: too many auth attempts from this client
    """
    runtime = get_runtime(request)
    await _enforce_rate_limit(runtime, "auth", request, response)
    account, _, tokens = await runtime.auth.register(
        email=body.email,
        password=body.password,
        account_type=body.user_type,
        profile_fields=body.profile_fields(),
        consents=body.consents.model_dump(),
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent,
    )
    return _ok(_auth_response(account, tokens))


@auth_router.post("/login", response_model=Envelope)
async def login(body: LoginRequest, request: Request, response: Response):
    """Exchange email and password for an access/refresh token pair."""
    runtime = get_runtime(request)
    await _enforce_rate_limit(runtime, "auth", request, response)
    account, tokens = await runtime.auth.login(body.email, body.password)
    return _ok(_auth_response(account, tokens))


@auth_router.post("/logout", response_model=Envelope)
async def logout(request: Request, authorization: Optional[str] = Header(None)):
    runtime = get_runtime(request)
    await runtime.auth.logout(authorization)
    return _ok(MessageResponse(message="Logged out successfully"))


@auth_router.post("/refresh", response_model=Envelope)
async def refresh_tokens(body: TokenRefreshRequest, request: Request):
    runtime = get_runtime(request)
    account, tokens = await runtime.auth.refresh(body.refresh_token)
    return _ok(_auth_response(account, tokens))


@auth_router.get("/me", response_model=Envelope)
async def get_me(request: Request, principal: Principal = Depends(get_principal)):
    runtime = get_runtime(request)
    account, profile = await runtime.auth.get_me(principal)
    return _ok(
        MeResponse(
            id=account.id,
            email=account.email,
            user_type=account.account_type,
            email_verified=account.email_verified,
            last_login_at=account.last_login_at,
            profile=_profile_response(profile),
        )
    )


# projects


@projects_router.post("", response_model=Envelope, status_code=201)
async def create_project(
    body: ProjectCreateRequest,
    request: Request,
    principal: Principal = Depends(require_account_type(AccountType.COMPANY)),
):
    runtime = get_runtime(request)
    view = await runtime.projects.create(principal, body.model_dump())
    return _ok(_project_response(view))


@projects_router.get("", response_model=Envelope)
async def list_projects(
    request: Request,
    response: Response,
    status: ProjectStatus = Query(ProjectStatus.OPEN),
    skills: Optional[str] = Query(None, description="Comma-separated required skills"),
    min_budget: Optional[float] = Query(None, alias="minBudget", ge=0),
    max_budget: Optional[float] = Query(None, alias="maxBudget", ge=0),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    """Public project search, newest published first."""
    runtime = get_runtime(request)
    search = search.strip() if search else None
    if search:
        await _enforce_rate_limit(runtime, "search", request, response)
    filters = ProjectFilter(
        status=status,
        skills=[s.strip() for s in skills.split(",") if s.strip()] if skills else [],
        min_budget=min_budget,
        max_budget=max_budget,
        search=search or None,
        page=page,
        limit=limit,
    )
    views, total = await runtime.projects.list_projects(filters)
    total_pages = (total + limit - 1) // limit
    return _ok(
        ProjectListResponse(
            projects=[_project_response(view) for view in views],
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=total_pages),
        )
    )


@projects_router.get("/{project_id}", response_model=Envelope)
async def get_project(request: Request, project_id: str = Path(..., min_length=1)):
    runtime = get_runtime(request)
    view = await runtime.projects.get(project_id)
    return _ok(_project_response(view))


@projects_router.put("/{project_id}", response_model=Envelope)
async def update_project(
    body: ProjectUpdateRequest,
    request: Request,
    project_id: str = Path(..., min_length=1),
    principal: Principal = Depends(require_account_type(AccountType.COMPANY)),
):
    runtime = get_runtime(request)
    view = await runtime.projects.update(principal, project_id, body.changes())
    return _ok(_project_response(view))


@projects_router.post("/{project_id}/publish", response_model=Envelope)
async def publish_project(
    request: Request,
    project_id: str = Path(..., min_length=1),
    principal: Principal = Depends(require_account_type(AccountType.COMPANY)),
):
    runtime = get_runtime(request)
    view = await runtime.projects.publish(principal, project_id)
    return _ok(_project_response(view))


@projects_router.delete("/{project_id}", response_model=Envelope)
async def delete_project(
    request: Request,
    project_id: str = Path(..., min_length=1),
    principal: Principal = Depends(require_account_type(AccountType.COMPANY)),
):
    runtime = get_runtime(request)
    await runtime.projects.delete(principal, project_id)
    return _ok(MessageResponse(message="Project deleted successfully"))
