from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from talentconnect.logging import get_logger
from talentconnect.storage.errors import ConstraintViolation, RecordNotFound
from talentconnect.storage.models import (
    Account,
    AccountStatus,
    AccountType,
    CompanyProfile,
    ConsentRecord,
    ProfessionalProfile,
    Profile,
    Project,
    ProjectApplication,
    ProjectFilter,
    ProjectStatus,
)

_REQUIRED_TABLES = (
    "app_account",
    "professional_profile",
    "company_profile",
    "consent_record",
    "project",
    "project_application",
)

_PROJECT_COLUMNS = (
    "title",
    "description",
    "required_skills",
    "budget_min",
    "budget_max",
    "duration_weeks",
    "deadline",
    "status",
    "published_at",
)


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    # NUMERIC columns come back as Decimal
    return float(value) if value is not None else None


class PostgresStore:
    """Postgres-backed store for accounts, profiles, consents and projects."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        connect_timeout: int = 5,
        statement_timeout_ms: int = 10000,
        pool_timeout: float = 10.0,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        # Bounded connect, statement and pool checkout waits
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=pool_timeout,
            kwargs={
                "row_factory": dict_row,
                "autocommit": False,
                "connect_timeout": int(connect_timeout),
                "options": f"-c statement_timeout={int(statement_timeout_ms)}",
            },
            open=True,
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Fail fast when the schema from scripts/schema.sql is not installed."""

        with self._connect() as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply scripts/schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # row mapping
    @staticmethod
    def _account_from_row(row: Dict[str, Any]) -> Account:
        return Account(
            id=str(row["id"]),
            email=row["email"],
            password_hash=row["password_hash"],
            account_type=AccountType(row["account_type"]),
            status=AccountStatus(row.get("status", "active")),
            email_verified=bool(row.get("email_verified", False)),
            last_login_at=row.get("last_login_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _professional_from_row(row: Dict[str, Any]) -> ProfessionalProfile:
        return ProfessionalProfile(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            first_name=row["first_name"],
            last_name=row["last_name"],
            headline=row.get("headline"),
            skills=list(row.get("skills") or []),
            hourly_rate=_as_float(row.get("hourly_rate")),
            location=row.get("location"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _company_from_row(row: Dict[str, Any]) -> CompanyProfile:
        return CompanyProfile(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            company_name=row["company_name"],
            description=row.get("description"),
            website=row.get("website"),
            location=row.get("location"),
            logo_url=row.get("logo_url"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _project_from_row(row: Dict[str, Any]) -> Project:
        return Project(
            id=str(row["id"]),
            company_id=str(row["company_id"]),
            title=row["title"],
            description=row["description"],
            required_skills=list(row.get("required_skills") or []),
            budget_min=_as_float(row.get("budget_min")),
            budget_max=_as_float(row.get("budget_max")),
            duration_weeks=row.get("duration_weeks"),
            deadline=row.get("deadline"),
            status=ProjectStatus(row["status"]),
            published_at=row.get("published_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # accounts
    def get_account(self, account_id: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_account WHERE id = %s", (account_id,)
            ).fetchone()
        return self._account_from_row(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_account WHERE email = %s", (email,)
            ).fetchone()
        return self._account_from_row(row) if row else None

    def provision_account(
        self,
        account: Account,
        profile: Profile,
        consents: Sequence[ConsentRecord],
    ) -> Account:
        """Insert the account, its profile and its consents in one transaction.

        Any failure rolls the whole unit back. A unique violation on the email
        column surfaces as ``ConstraintViolation`` and is the authoritative
        duplicate-email signal.
        """

        try:
            with self._connect() as conn, conn.transaction():
                conn.execute(
                    """
                    INSERT INTO app_account (
                        id, email, password_hash, account_type, status,
                        email_verified, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        account.id,
                        account.email,
                        account.password_hash,
                        account.account_type.value,
                        account.status.value,
                        account.email_verified,
                        account.created_at,
                        account.updated_at,
                    ),
                )
                self._insert_profile(conn, account, profile)
                for record in consents:
                    conn.execute(
                        """
                        INSERT INTO consent_record (
                            id, account_id, consent_type, granted, consent_text,
                            ip_address, user_agent, created_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            record.id,
                            account.id,
                            record.consent_type,
                            record.granted,
                            record.consent_text,
                            record.ip_address,
                            record.user_agent,
                            record.created_at,
                        ),
                    )
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("email already exists", {"field": "email"}) from exc
        self.logger.info(
            "postgres_account_provisioned",
            account_id=account.id,
            consent_count=len(consents),
        )
        return account

    def _insert_profile(self, conn, account: Account, profile: Profile) -> None:
        if profile.account_type != account.account_type:
            raise ValueError(
                f"{account.account_type.value} account cannot own a "
                f"{profile.account_type.value} profile"
            )
        if isinstance(profile, ProfessionalProfile):
            conn.execute(
                """
                INSERT INTO professional_profile (
                    id, account_id, first_name, last_name, headline, skills,
                    hourly_rate, location
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    profile.id,
                    account.id,
                    profile.first_name,
                    profile.last_name,
                    profile.headline,
                    profile.skills,
                    profile.hourly_rate,
                    profile.location,
                ),
            )
        else:
            conn.execute(
                """
                INSERT INTO company_profile (
                    id, account_id, company_name, description, website,
                    location, logo_url
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    profile.id,
                    account.id,
                    profile.company_name,
                    profile.description,
                    profile.website,
                    profile.location,
                    profile.logo_url,
                ),
            )

    def record_login(self, account_id: str, when: datetime) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE app_account SET last_login_at = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (when, when, account_id),
            ).fetchone()
        return self._account_from_row(row) if row else None

    def get_profile(self, account_id: str) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM professional_profile WHERE account_id = %s",
                (account_id,),
            ).fetchone()
            if row:
                return self._professional_from_row(row)
            row = conn.execute(
                "SELECT * FROM company_profile WHERE account_id = %s", (account_id,)
            ).fetchone()
        return self._company_from_row(row) if row else None

    def get_company_profile(self, profile_id: str) -> Optional[CompanyProfile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM company_profile WHERE id = %s", (profile_id,)
            ).fetchone()
        return self._company_from_row(row) if row else None

    def list_consents(self, account_id: str) -> List[ConsentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM consent_record WHERE account_id = %s ORDER BY created_at",
                (account_id,),
            ).fetchall()
        return [
            ConsentRecord(
                id=str(row["id"]),
                account_id=str(row["account_id"]),
                consent_type=row["consent_type"],
                granted=bool(row["granted"]),
                consent_text=row["consent_text"],
                ip_address=row.get("ip_address"),
                user_agent=row.get("user_agent"),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # projects
    def create_project(self, project: Project) -> Project:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO project (
                        id, company_id, title, description, required_skills,
                        budget_min, budget_max, duration_weeks, deadline, status,
                        published_at, created_at, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        project.id,
                        project.company_id,
                        project.title,
                        project.description,
                        project.required_skills,
                        project.budget_min,
                        project.budget_max,
                        project.duration_weeks,
                        project.deadline,
                        project.status.value,
                        project.published_at,
                        project.created_at,
                        project.updated_at,
                    ),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "company profile does not exist", {"field": "company_id"}
            ) from exc
        except errors.UniqueViolation as exc:
            raise ConstraintViolation("project already exists", {"field": "id"}) from exc
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM project WHERE id = %s", (project_id,)
            ).fetchone()
        return self._project_from_row(row) if row else None

    def list_projects(self, filters: ProjectFilter) -> Tuple[List[Project], int]:
        clauses = ["status = %s"]
        params: List[Any] = [filters.status.value]
        if filters.skills:
            clauses.append("required_skills @> %s::text[]")
            params.append(list(filters.skills))
        if filters.min_budget is not None:
            clauses.append("budget_max >= %s")
            params.append(filters.min_budget)
        if filters.max_budget is not None:
            clauses.append("budget_min <= %s")
            params.append(filters.max_budget)
        if filters.search:
            clauses.append("(title ILIKE %s OR description ILIKE %s)")
            pattern = f"%{filters.search}%"
            params.extend([pattern, pattern])
        where = " AND ".join(clauses)

        with self._connect() as conn:
            total_row = conn.execute(
                f"SELECT COUNT(*) AS total FROM project WHERE {where}", params
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM project WHERE {where}
                ORDER BY published_at DESC NULLS LAST, created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, filters.limit, filters.offset],
            ).fetchall()
        total = int(total_row["total"]) if total_row else 0
        return [self._project_from_row(row) for row in rows], total

    def update_project(self, project_id: str, **updates: Any) -> Project:
        unknown = set(updates) - set(_PROJECT_COLUMNS)
        if unknown:
            raise ValueError(f"unsupported project fields: {', '.join(sorted(unknown))}")
        assignments = []
        params: List[Any] = []
        for column in _PROJECT_COLUMNS:
            if column not in updates:
                continue
            value = updates[column]
            if isinstance(value, ProjectStatus):
                value = value.value
            assignments.append(f"{column} = %s")
            params.append(value)
        assignments.append("updated_at = now()")
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE project SET {', '.join(assignments)} WHERE id = %s RETURNING *",
                [*params, project_id],
            ).fetchone()
        if not row:
            raise RecordNotFound("project", project_id)
        return self._project_from_row(row)

    def delete_project(self, project_id: str) -> None:
        try:
            with self._connect() as conn:
                cur = conn.execute("DELETE FROM project WHERE id = %s", (project_id,))
                deleted = cur.rowcount
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "project has applications", {"field": "project_id"}
            ) from exc
        if not deleted:
            raise RecordNotFound("project", project_id)

    def add_application(self, application: ProjectApplication) -> ProjectApplication:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO project_application (id, project_id, professional_id, status, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        application.id,
                        application.project_id,
                        application.professional_id,
                        application.status,
                        application.created_at,
                    ),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation("project does not exist", {"field": "project_id"}) from exc
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "application already exists", {"field": "professional_id"}
            ) from exc
        return application

    def count_applications(self, project_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM project_application WHERE project_id = %s",
                (project_id,),
            ).fetchone()
        return int(row["total"]) if row else 0
