import os

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

import itertools
import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import requests
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError
from supabase_auth.errors import AuthApiError

from app.config import Settings, get_settings
from app.dependencies import get_fipe_client, get_profile_cache
from app.main import app
from app.services.fipe import FipeClient
from app.services.profile_cache import ProfileCache
from app.services.session_store import SessionConfig, SessionStore
from app.supabase_client import BackendClient, get_auth_backend, get_backend


def no_sleep(_seconds):
    return None


def api_error(code, message="error"):
    return APIError({"code": code, "message": message, "details": None, "hint": None})


# --------------------------------------------------------------------------- #
# In-memory Supabase
# --------------------------------------------------------------------------- #
UNIQUE = {
    "brands": [("name",)],
    "models": [("brand_id", "name")],
    "user_profiles": [("user_id",)],
}


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._count = None
        self._payload = None
        self._on_conflict = None
        self._filters = []
        self._order = None
        self._single = False

    def select(self, columns="*", count=None):
        self._columns = columns
        self._count = count
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def upsert(self, payload, on_conflict=""):
        self._op = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        return self

    def update(self, values):
        self._op = "update"
        self._payload = values
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def single(self):
        self._single = True
        return self

    def execute(self):
        self._db.calls.append((self._table, self._op))
        failure = self._db.pop_failure(self._table, self._op)
        if failure is not None:
            raise failure
        return getattr(self, f"_run_{self._op}")()

    # -- helpers --------------------------------------------------------- #
    def _rows(self):
        return self._db.tables.setdefault(self._table, [])

    def _matches(self, row):
        return all(str(row.get(column)) == str(value) for column, value in self._filters)

    def _check_unique(self, candidate, ignore=None):
        for columns in UNIQUE.get(self._table, []):
            for row in self._rows():
                if row is ignore:
                    continue
                if all(row.get(c) == candidate.get(c) for c in columns):
                    raise api_error("23505", f"duplicate key value violates unique constraint on {self._table}")

    def _check_foreign_keys(self, candidate):
        if self._table == "models":
            brand_ids = {str(b["id"]) for b in self._db.tables.get("brands", [])}
            if str(candidate.get("brand_id")) not in brand_ids:
                raise api_error("23503", "insert or update on table models violates foreign key constraint")

    def _run_select(self):
        rows = [dict(row) for row in self._rows() if self._matches(row)]
        if "brands(name)" in self._columns:
            brands = {str(b["id"]): b for b in self._db.tables.get("brands", [])}
            for row in rows:
                brand = brands.get(str(row.get("brand_id")))
                row["brands"] = {"name": brand["name"]} if brand else None
        if self._order:
            column, desc = self._order
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self._single:
            if len(rows) != 1:
                raise api_error("PGRST116", "JSON object requested, multiple (or no) rows returned")
            return FakeResponse(rows[0])
        return FakeResponse(rows, count=len(rows) if self._count else None)

    def _run_insert(self):
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        inserted = []
        for item in payload:
            row = dict(item)
            self._check_unique(row)
            self._check_foreign_keys(row)
            row.setdefault("id", self._db.next_id(self._table))
            row.setdefault("created_at", self._db.now())
            self._rows().append(row)
            inserted.append(dict(row))
        return FakeResponse(inserted)

    def _run_upsert(self):
        row = dict(self._payload)
        keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
        for existing in self._rows():
            if all(existing.get(k) == row.get(k) for k in keys):
                existing.update(row)
                return FakeResponse([dict(existing)])
        return self._run_insert()

    def _run_update(self):
        updated = []
        for row in self._rows():
            if self._matches(row):
                candidate = {**row, **self._payload}
                self._check_unique(candidate, ignore=row)
                self._check_foreign_keys(candidate)
                row.update(self._payload)
                updated.append(dict(row))
        return FakeResponse(updated)

    def _run_delete(self):
        removed = [row for row in self._rows() if self._matches(row)]
        self._db.tables[self._table] = [row for row in self._rows() if not self._matches(row)]
        if self._table == "brands":
            ids = {str(row["id"]) for row in removed}
            self._db.tables["models"] = [
                m for m in self._db.tables.get("models", []) if str(m.get("brand_id")) not in ids
            ]
        return FakeResponse([dict(row) for row in removed])


class AuthRegistry:
    """Users and tokens shared by every client of one fake project."""

    def __init__(self):
        self.users = {}
        self.passwords = {}
        self.tokens = {}
        self.revoked = []
        self.recovery_emails = []
        self.password_updates = []
        self.failures = {}
        self.get_user_delay = 0.0
        self._ids = itertools.count(1)

    def create_user(self, email, password):
        user = SimpleNamespace(id=f"user-{next(self._ids)}", email=email, user_metadata={})
        self.users[email] = user
        self.passwords[email] = password
        return user

    def issue_session(self, user):
        token = f"token-{user.id}-{len(self.tokens)}"
        self.tokens[token] = user
        return SimpleNamespace(access_token=token, refresh_token=f"refresh-{token}", user=user)

    def fail(self, method, exc, times=1):
        self.failures.setdefault(method, []).extend([exc] * times)

    def maybe_fail(self, method):
        queue = self.failures.get(method)
        if queue:
            raise queue.pop(0)


class FakeAdmin:
    def __init__(self, registry):
        self._registry = registry

    def sign_out(self, jwt, scope="global"):
        self._registry.maybe_fail("admin.sign_out")
        self._registry.tokens.pop(jwt, None)
        self._registry.revoked.append(jwt)

    def update_user_by_id(self, uid, attributes):
        self._registry.maybe_fail("admin.update_user_by_id")
        self._registry.password_updates.append((uid, attributes))
        for email, user in self._registry.users.items():
            if user.id == uid and "password" in attributes:
                self._registry.passwords[email] = attributes["password"]
        return SimpleNamespace(user=None)


class FakeAuth:
    def __init__(self, registry):
        self._registry = registry
        self._session = None
        self._subscribers = []
        self.admin = FakeAdmin(registry)

    @property
    def subscriber_count(self):
        return len(self._subscribers)

    def on_auth_state_change(self, callback):
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return SimpleNamespace(id=str(id(callback)), callback=callback, unsubscribe=unsubscribe)

    def _notify(self, event, session):
        for callback in list(self._subscribers):
            callback(event, session)

    def get_session(self):
        self._registry.maybe_fail("get_session")
        return self._session

    def get_user(self, jwt=None):
        self._registry.maybe_fail("get_user")
        if self._registry.get_user_delay:
            time.sleep(self._registry.get_user_delay)
        user = self._registry.tokens.get(jwt)
        if user is None:
            raise AuthApiError("invalid JWT: unable to parse or verify signature", 403, "bad_jwt")
        return SimpleNamespace(user=user)

    def sign_in_with_password(self, credentials):
        self._registry.maybe_fail("sign_in_with_password")
        email = credentials["email"]
        if self._registry.passwords.get(email) != credentials["password"]:
            raise AuthApiError("Invalid login credentials", 400, "invalid_credentials")
        session = self._registry.issue_session(self._registry.users[email])
        self._session = session
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=session.user, session=session)

    def sign_up(self, credentials):
        self._registry.maybe_fail("sign_up")
        email = credentials["email"]
        if email in self._registry.users:
            raise AuthApiError("User already registered", 422, "user_already_exists")
        user = self._registry.create_user(email, credentials["password"])
        user.user_metadata = credentials.get("options", {}).get("data", {})
        session = self._registry.issue_session(user)
        self._session = session
        self._notify("SIGNED_IN", session)
        return SimpleNamespace(user=user, session=session)

    def sign_in_with_oauth(self, credentials):
        provider = credentials["provider"]
        redirect = credentials.get("options", {}).get("redirect_to", "")
        return SimpleNamespace(provider=provider, url=f"https://fake.supabase.co/auth/v1/authorize?provider={provider}&redirect_to={redirect}")

    def sign_out(self, options=None):
        self._session = None
        self._notify("SIGNED_OUT", None)

    def reset_password_for_email(self, email, options=None):
        self._registry.maybe_fail("reset_password_for_email")
        self._registry.recovery_emails.append((email, options or {}))


class FakeSupabase:
    def __init__(self, tables=None, registry=None):
        self.tables = tables if tables is not None else {}
        self.registry = registry or AuthRegistry()
        self.auth = FakeAuth(self.registry)
        self.postgrest = SimpleNamespace(session=SimpleNamespace(event_hooks={"request": [], "response": []}))
        self.calls = []
        self._failures = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def anon_client(self):
        """Another client of the same project: shared data, its own auth session."""
        other = FakeSupabase(tables=self.tables, registry=self.registry)
        other._failures = self._failures
        other.calls = self.calls
        other._ids = self._ids
        return other

    def table(self, name):
        return FakeQuery(self, name)

    def next_id(self, table):
        return f"{table}-{next(self._ids)}"

    def now(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def fail(self, table, op, exc, times=1):
        self._failures.setdefault((table, op), []).extend([exc] * times)

    def pop_failure(self, table, op):
        queue = self._failures.get((table, op))
        if queue:
            return queue.pop(0)
        return None

    def count(self, table, **filters):
        return sum(
            1 for row in self.tables.get(table, [])
            if all(str(row.get(k)) == str(v) for k, v in filters.items())
        )

    def add_user(self, email, password="secret123", role=None, name=None):
        """Create an auth user (and a profile row when `role` is given); returns (user, token)."""
        user = self.registry.create_user(email, password)
        if role is not None:
            self.tables.setdefault("user_profiles", []).append(
                {"id": self.next_id("user_profiles"), "user_id": user.id, "email": email, "role": role, "name": name}
            )
        token = self.registry.issue_session(user).access_token
        return user, token


# --------------------------------------------------------------------------- #
# FIPE stub
# --------------------------------------------------------------------------- #
class StubResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        return self._payload


class StubSession:
    def __init__(self, routes=None):
        self.routes = routes or {}
        self.headers = {}
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append((url, timeout))
        path = url.split("/fipe/api/v1", 1)[-1]
        if path not in self.routes:
            return StubResponse({"error": "not found"}, status_code=404)
        result = self.routes[path]
        if isinstance(result, Exception):
            raise result
        return StubResponse(result)


FIPE_ROUTES = {
    "/carros/marcas": [{"codigo": "21", "nome": "Ford"}, {"codigo": "59", "nome": "VW - VolksWagen"}],
    "/carros/marcas/21/modelos": {
        "modelos": [{"codigo": 5940, "nome": "Ka 1.0 SE/SE Plus TiVCT Flex 5p"}],
        "anos": [{"codigo": "2015-1", "nome": "2015 Gasolina"}],
    },
    "/carros/marcas/21/modelos/5940/anos": [{"codigo": "2015-1", "nome": "2015 Gasolina"}],
    "/carros/marcas/21/modelos/5940/anos/2015-1": {
        "TipoVeiculo": 1,
        "Valor": "R$ 38.105,00",
        "Marca": "Ford",
        "Modelo": "Ka 1.0 SE/SE Plus TiVCT Flex 5p",
        "AnoModelo": 2015,
        "Combustivel": "Gasolina",
        "CodigoFipe": "003466-4",
        "MesReferencia": "outubro de 2024",
        "SiglaCombustivel": "G",
    },
}


# --------------------------------------------------------------------------- #
# Fixtures
# --------------------------------------------------------------------------- #
@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def backend(fake_db):
    return BackendClient(fake_db, max_retries=2, backoff_seconds=0, sleep=no_sleep)


@pytest.fixture
def cache(tmp_path):
    return ProfileCache(tmp_path / "profile_cache.json")


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        SUPABASE_URL="http://localhost:54321",
        SUPABASE_SERVICE_ROLE_KEY="test-service-role-key",
        SUPABASE_ANON_KEY="test-anon-key",
        AUTH_INIT_TIMEOUT_SECONDS=0.5,
        AUTH_INIT_MAX_RETRIES=3,
        AUTH_RETRY_BACKOFF_SECONDS=0,
        BACKEND_RETRY_BACKOFF_SECONDS=0,
        PROFILE_CACHE_PATH=str(tmp_path / "profile_cache.json"),
        SITE_URL="https://autotrackr.test",
    )


@pytest.fixture
def make_store(fake_db, backend, cache):
    stores = []

    def _make(**config):
        options = {"init_timeout_seconds": 0.5, "max_retries": 3, "backoff_seconds": 0, "site_url": "https://autotrackr.test"}
        options.update(config)
        auth_backend = BackendClient(fake_db.anon_client(), max_retries=2, backoff_seconds=0, sleep=no_sleep)
        store = SessionStore(backend, auth_backend, cache, SessionConfig(**options), sleep=no_sleep)
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.close()


@pytest.fixture
def fipe_session():
    return StubSession(dict(FIPE_ROUTES))


@pytest.fixture
def client(fake_db, backend, cache, test_settings, fipe_session):
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_auth_backend] = lambda: BackendClient(
        fake_db.anon_client(), max_retries=2, backoff_seconds=0, sleep=no_sleep
    )
    app.dependency_overrides[get_profile_cache] = lambda: cache
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_fipe_client] = lambda: FipeClient(
        base_url="https://parallelum.com.br/fipe/api/v1", session=fipe_session
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer
