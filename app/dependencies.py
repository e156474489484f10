from functools import lru_cache

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .guards import DASHBOARD_PATH, LOGIN_PATH, Action, evaluate
from .services.fipe import FipeClient
from .services.profile_cache import ProfileCache
from .services.session_store import SessionConfig, SessionStore
from .supabase_client import BackendClient, get_auth_backend, get_backend

security = HTTPBearer(auto_error=False)


@lru_cache
def get_profile_cache() -> ProfileCache:
    return ProfileCache(get_settings().PROFILE_CACHE_PATH)


@lru_cache
def get_fipe_client() -> FipeClient:
    settings = get_settings()
    return FipeClient(base_url=settings.FIPE_BASE_URL, timeout_seconds=settings.FIPE_TIMEOUT_SECONDS)


def get_session_store(
    credentials: HTTPAuthorizationCredentials | None = Security(security),
    backend: BackendClient = Depends(get_backend),
    auth_backend: BackendClient = Depends(get_auth_backend),
    cache: ProfileCache = Depends(get_profile_cache),
    settings: Settings = Depends(get_settings),
):
    """
    Builds the session store for this request from the bearer token, if any.
    Never raises: a missing or expired token yields an unauthenticated store.
    """
    store = SessionStore(backend, auth_backend, cache, SessionConfig.from_settings(settings))
    store.attach()
    store.initialize(credentials.credentials if credentials else None)
    try:
        yield store
    finally:
        store.close()


def _enforce(store: SessionStore, path: str) -> SessionStore:
    decision = evaluate(store.snapshot(), path)
    if decision.action is Action.RENDER:
        return store

    if decision.action in (Action.RETRY, Action.LOADING):
        raise HTTPException(
            status_code=503,
            detail="Could not reach the authentication service. Please retry.",
            headers={"Retry-After": "1"},
        )

    if decision.redirect_to == LOGIN_PATH:
        raise HTTPException(
            status_code=401,
            detail="Session expired. Please sign in again.",
            headers={"Location": LOGIN_PATH, "WWW-Authenticate": "Bearer"},
        )

    raise HTTPException(
        status_code=403,
        detail="Admin privileges required",
        headers={"Location": decision.redirect_to or DASHBOARD_PATH},
    )


def require_session(store: SessionStore = Depends(get_session_store)) -> SessionStore:
    """Requires a signed-in user (the /dashboard guard)."""
    return _enforce(store, DASHBOARD_PATH)


def require_admin(store: SessionStore = Depends(get_session_store)) -> SessionStore:
    """Requires a signed-in admin (the /admin guard)."""
    return _enforce(store, "/admin")
