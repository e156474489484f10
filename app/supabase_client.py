import logging
import time
from enum import Enum
from functools import lru_cache
from typing import Any, Callable

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client
from supabase_auth.errors import AuthApiError, AuthError, AuthRetryableError
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from .config import get_settings
from .schemas.auth import AuthenticatedUser

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    FOREIGN_KEY = "foreign_key"
    PERMISSION = "permission"
    AUTH = "auth"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    UNKNOWN = "unknown"


HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE: 409,
    ErrorKind.FOREIGN_KEY: 409,
    ErrorKind.PERMISSION: 403,
    ErrorKind.AUTH: 401,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.NETWORK: 503,
    ErrorKind.SERVER: 503,
    ErrorKind.UNKNOWN: 500,
}

# Kinds that mean "the backend could not be reached", as opposed to "the backend said no".
CONNECTIVITY_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.SERVER})

POSTGREST_CODES = {
    "PGRST116": ErrorKind.NOT_FOUND,
    "23505": ErrorKind.DUPLICATE,
    "23503": ErrorKind.FOREIGN_KEY,
    "42501": ErrorKind.PERMISSION,
    "PGRST301": ErrorKind.PERMISSION,
}


class BackendError(Exception):
    """A Supabase failure, classified once at the client boundary."""

    def __init__(self, kind: ErrorKind, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.status = status

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def is_connectivity(self) -> bool:
        return self.kind in CONNECTIVITY_KINDS

    def __repr__(self) -> str:
        return f"BackendError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"


def to_backend_error(exc: Exception) -> BackendError:
    """Map a postgrest / auth / transport exception to a BackendError."""
    if isinstance(exc, BackendError):
        return exc

    if isinstance(exc, APIError):
        code = str(exc.code) if exc.code is not None else None
        message = exc.message or str(exc)
        if code in POSTGREST_CODES:
            return BackendError(POSTGREST_CODES[code], message, code=code)
        # postgrest reports the HTTP status as the code when the body is not JSON
        if code and code.isdigit():
            status = int(code)
            kind = ErrorKind.SERVER if status >= 500 else ErrorKind.UNKNOWN
            return BackendError(kind, message, code=code, status=status)
        return BackendError(ErrorKind.UNKNOWN, message, code=code)

    if isinstance(exc, AuthRetryableError):
        status = getattr(exc, "status", None) or None
        kind = ErrorKind.SERVER if status and status >= 500 else ErrorKind.NETWORK
        return BackendError(kind, exc.message, status=status)

    if isinstance(exc, AuthApiError):
        status = getattr(exc, "status", None)
        code = getattr(exc, "code", None)
        if status and status >= 500:
            return BackendError(ErrorKind.SERVER, exc.message, code=code, status=status)
        return BackendError(ErrorKind.AUTH, exc.message, code=code, status=status)

    if isinstance(exc, AuthError):
        return BackendError(ErrorKind.AUTH, exc.message, code=getattr(exc, "code", None))

    if isinstance(exc, httpx.TimeoutException):
        return BackendError(ErrorKind.TIMEOUT, "The request to the backend timed out.")

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        kind = ErrorKind.SERVER if status >= 500 else ErrorKind.UNKNOWN
        body = _json_body(exc.response)
        return BackendError(kind, body.get("message") or str(exc), code=body.get("code"), status=status)

    if isinstance(exc, httpx.HTTPError):
        return BackendError(ErrorKind.NETWORK, "Could not reach the backend.")

    return BackendError(ErrorKind.UNKNOWN, str(exc))


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def raise_for_server_error(response: httpx.Response) -> None:
    """
    httpx response hook for the PostgREST session.

    postgrest-py turns a JSON error body into an APIError carrying only the
    SQLSTATE, so a 5xx has to be caught here while its status is still known.
    """
    if response.status_code >= 500:
        response.read()
        raise httpx.HTTPStatusError(
            f"Server error {response.status_code} for {response.request.method} {response.request.url}",
            request=response.request,
            response=response,
        )


def _is_http_500(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.status == 500


class BackendClient:
    """
    Thin wrapper around a Supabase client.

    Every call goes through `run`, which translates SDK exceptions into
    BackendError and retries only HTTP 500 responses.
    """

    def __init__(
        self,
        client: Client,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    @property
    def auth(self):
        return self._client.auth

    def table(self, name: str):
        self._install_response_hook()
        return self._client.table(name)

    def execute(self, query) -> Any:
        return self.run(query.execute)

    def run(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        retrying = Retrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=5),
            retry=retry_if_exception(_is_http_500),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._call, fn, *args, **kwargs)

    def _install_response_hook(self) -> None:
        # supabase-py rebuilds its PostgREST client on auth changes, so check every time.
        session = self._client.postgrest.session
        hooks = session.event_hooks
        if raise_for_server_error not in hooks["response"]:
            hooks["response"] = [*hooks["response"], raise_for_server_error]
            session.event_hooks = hooks

    def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return fn(*args, **kwargs)
        except (APIError, AuthError, httpx.HTTPError) as exc:
            raise to_backend_error(exc) from exc

    def get_user(self, access_token: str | None) -> AuthenticatedUser | None:
        """
        Resolve the user behind an access token, or behind the client's own
        session when no token is given. Returns None when there is no user.
        """
        if access_token:
            response = self.run(self.auth.get_user, access_token)
            supa_user = response.user if response else None
        else:
            session = self.run(self.auth.get_session)
            supa_user = session.user if session else None

        if supa_user is None:
            return None
        return AuthenticatedUser.from_supabase(supa_user)


def _client_options(**overrides) -> ClientOptions:
    settings = get_settings()
    return ClientOptions(postgrest_client_timeout=settings.BACKEND_REQUEST_TIMEOUT_SECONDS, **overrides)


@lru_cache
def get_supabase_client() -> Client:
    """
    Returns a singleton Supabase client configured with service role credentials.
    """
    settings = get_settings()
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options=_client_options())


def create_supabase_anon_client() -> Client:
    """
    Returns a new Supabase client using the anon key for auth flows (password login/signup).

    Not cached: the client keeps the signed-in session in memory, so sharing it
    would leak one user's session and auth events into another request.
    """
    settings = get_settings()
    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_ANON_KEY or settings.SUPABASE_SERVICE_ROLE_KEY,
        options=_client_options(auto_refresh_token=False, persist_session=False),
    )


@lru_cache
def get_backend() -> BackendClient:
    settings = get_settings()
    return BackendClient(
        get_supabase_client(),
        max_retries=settings.BACKEND_MAX_RETRIES,
        backoff_seconds=settings.BACKEND_RETRY_BACKOFF_SECONDS,
    )


def get_auth_backend() -> BackendClient:
    settings = get_settings()
    return BackendClient(
        create_supabase_anon_client(),
        max_retries=settings.BACKEND_MAX_RETRIES,
        backoff_seconds=settings.BACKEND_RETRY_BACKOFF_SECONDS,
    )
