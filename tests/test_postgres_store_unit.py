from datetime import datetime, timezone
from decimal import Decimal

import pytest
from psycopg import errors

from talentconnect.logging import get_logger
from talentconnect.storage.errors import ConstraintViolation, RecordNotFound
from talentconnect.storage.models import (
    PROFILE_BUILDERS,
    Account,
    AccountType,
    ConsentRecord,
    Project,
    ProjectFilter,
    ProjectStatus,
)
from talentconnect.storage.postgres import PostgresStore


class StubCursor:
    def __init__(self, row=None, rows=None, rowcount=0):
        self._row = row
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._row

    def fetchall(self):
        return self._rows


class StubTransaction:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        self.conn.transaction_depth += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self.conn.transaction_depth -= 1
        if exc_type is None:
            self.conn.committed = True
        else:
            self.conn.rolled_back = True
        return False


class StubConnection:
    """Records statements; ``fail_on`` makes the matching statement raise."""

    def __init__(self, fail_on=None, error=None, results=None):
        self.statements = []
        self.fail_on = fail_on
        self.error = error
        self.results = list(results or [])
        self.transaction_depth = 0
        self.committed = False
        self.rolled_back = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return StubTransaction(self)

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params, self.transaction_depth))
        if self.fail_on and self.fail_on in sql:
            raise self.error
        if self.results:
            return self.results.pop(0)
        return StubCursor()


class StubPool:
    def __init__(self, conn):
        self.conn = conn

    def connection(self):
        return self.conn


def _store(conn) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.dsn = "postgresql://stub"
    store.pool = StubPool(conn)
    store.logger = get_logger("test")
    return store


def _provisioning_inputs(account_type=AccountType.PROFESSIONAL):
    account = Account(
        id="acct-1",
        email="a@b.com",
        password_hash="hash",
        account_type=account_type,
    )
    profile = PROFILE_BUILDERS[account_type](account.id, {"first_name": "Ada"})
    consents = [
        ConsentRecord.new(account.id, "terms", True),
        ConsentRecord.new(account.id, "privacy", True),
    ]
    return account, profile, consents


class TestProvisionAccount:
    def test_all_inserts_share_one_transaction(self):
        conn = StubConnection()
        store = _store(conn)
        account, profile, consents = _provisioning_inputs()

        store.provision_account(account, profile, consents)

        tables = [sql.split()[2] for sql, _, _ in conn.statements]
        assert tables == ["app_account", "professional_profile", "consent_record", "consent_record"]
        assert all(depth == 1 for _, _, depth in conn.statements)
        assert conn.committed and not conn.rolled_back

    def test_company_account_inserts_company_profile(self):
        conn = StubConnection()
        store = _store(conn)
        account, _, _ = _provisioning_inputs(AccountType.COMPANY)
        profile = PROFILE_BUILDERS[AccountType.COMPANY](account.id, {"company_name": "Acme"})

        store.provision_account(account, profile, [])

        assert conn.statements[1][0].startswith("INSERT INTO company_profile")

    def test_unique_violation_becomes_constraint_violation(self):
        conn = StubConnection(fail_on="INSERT INTO app_account", error=errors.UniqueViolation())
        store = _store(conn)

        with pytest.raises(ConstraintViolation) as excinfo:
            store.provision_account(*_provisioning_inputs())

        assert excinfo.value.detail == {"field": "email"}
        assert conn.rolled_back and not conn.committed

    def test_failure_after_account_insert_rolls_back(self):
        conn = StubConnection(fail_on="INSERT INTO consent_record", error=RuntimeError("boom"))
        store = _store(conn)

        with pytest.raises(RuntimeError):
            store.provision_account(*_provisioning_inputs())

        assert conn.rolled_back and not conn.committed

    def test_mismatched_profile_is_refused_inside_transaction(self):
        conn = StubConnection()
        store = _store(conn)
        account, _, consents = _provisioning_inputs(AccountType.COMPANY)
        wrong = PROFILE_BUILDERS[AccountType.PROFESSIONAL](account.id, {})

        with pytest.raises(ValueError):
            store.provision_account(account, wrong, consents)
        assert conn.rolled_back


class TestProjects:
    def test_list_projects_builds_filters(self):
        count = StubCursor(row={"total": 0})
        conn = StubConnection(results=[count, StubCursor(rows=[])])
        store = _store(conn)

        projects, total = store.list_projects(
            ProjectFilter(skills=["python"], min_budget=100, search="api", page=2, limit=10)
        )

        assert (projects, total) == ([], 0)
        count_sql, count_params, _ = conn.statements[0]
        assert "required_skills @> %s::text[]" in count_sql
        assert "budget_max >= %s" in count_sql
        assert "ILIKE" in count_sql
        assert count_params == ["open", ["python"], 100, "%api%", "%api%"]
        page_sql, page_params, _ = conn.statements[1]
        assert "ORDER BY published_at DESC" in page_sql
        assert page_params[-2:] == [10, 10]

    def test_update_missing_project_raises(self):
        conn = StubConnection(results=[StubCursor(row=None)])
        store = _store(conn)

        with pytest.raises(RecordNotFound):
            store.update_project("missing", status=ProjectStatus.OPEN)

        sql, params, _ = conn.statements[0]
        assert sql.startswith("UPDATE project SET status = %s")
        assert params == ["open", "missing"]

    def test_update_rejects_unknown_columns(self):
        store = _store(StubConnection())
        with pytest.raises(ValueError):
            store.update_project("p", company_id="other")

    def test_delete_missing_project_raises(self):
        conn = StubConnection(results=[StubCursor(rowcount=0)])
        with pytest.raises(RecordNotFound):
            _store(conn).delete_project("missing")

    def test_project_row_mapping_converts_numeric(self):
        now = datetime.now(timezone.utc)
        row = {
            "id": "p1",
            "company_id": "c1",
            "title": "Build an API",
            "description": "Long enough description",
            "required_skills": ["python"],
            "budget_min": Decimal("100.50"),
            "budget_max": None,
            "duration_weeks": 4,
            "deadline": None,
            "status": "open",
            "published_at": now,
            "created_at": now,
            "updated_at": now,
        }
        project = PostgresStore._project_from_row(row)
        assert project.budget_min == 100.5
        assert project.status == ProjectStatus.OPEN

    def test_foreign_key_violation_on_create(self):
        conn = StubConnection(fail_on="INSERT INTO project", error=errors.ForeignKeyViolation())
        project = Project(id="p1", company_id="nope", title="t" * 10, description="d" * 10)
        with pytest.raises(ConstraintViolation):
            _store(conn).create_project(project)

    def test_delete_with_applications_becomes_constraint_violation(self):
        conn = StubConnection(fail_on="DELETE FROM project", error=errors.ForeignKeyViolation())
        with pytest.raises(ConstraintViolation) as excinfo:
            _store(conn).delete_project("p1")
        assert excinfo.value.detail == {"field": "project_id"}


class RecordingPool:
    instances = []

    def __init__(self, conninfo, **kwargs):
        self.conninfo = conninfo
        self.kwargs = kwargs
        RecordingPool.instances.append(self)


class TestPoolConfiguration:
    def test_connect_statement_and_checkout_are_bounded(self, monkeypatch):
        RecordingPool.instances.clear()
        monkeypatch.setattr("talentconnect.storage.postgres.ConnectionPool", RecordingPool)
        monkeypatch.setattr(PostgresStore, "_verify_required_schema", lambda self: None)

        PostgresStore(
            "postgresql://db/tc",
            max_size=4,
            connect_timeout=3,
            statement_timeout_ms=2500,
            pool_timeout=7.5,
        )

        pool = RecordingPool.instances[0]
        assert pool.conninfo == "postgresql://db/tc"
        assert pool.kwargs["max_size"] == 4
        assert pool.kwargs["timeout"] == 7.5
        assert pool.kwargs["kwargs"]["connect_timeout"] == 3
        assert pool.kwargs["kwargs"]["options"] == "-c statement_timeout=2500"
