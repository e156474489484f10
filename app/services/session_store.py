"""
Session/profile store.

Holds who is signed in for one browser session, their profile and the derived
admin flag, and keeps that in step with the auth service:

    INITIALIZING -> AUTHENTICATED | UNAUTHENTICATED
    INITIALIZING -> TIMED_OUT -> (automatic retry) INITIALIZING ... -> FAILED
    TIMED_OUT | FAILED -> retry_connection() -> INITIALIZING
    AUTHENTICATED -> SIGNED_OUT event -> UNAUTHENTICATED

Connectivity failures while retrieving the session are retried a fixed number
of times. Profile lookups are never retried: they fall back to the cached
snapshot or to a default `user` profile on the first failure.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import Settings
from ..schemas.auth import AuthenticatedUser, Role, SessionSnapshot, SessionState, UserProfile
from ..supabase_client import BackendClient, BackendError, ErrorKind
from .profile_cache import ProfileCache

logger = logging.getLogger(__name__)

PROFILES_TABLE = "user_profiles"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"

Listener = Callable[[SessionSnapshot], None]


@dataclass(frozen=True)
class SessionConfig:
    init_timeout_seconds: float = 10.0
    max_retries: int = 3
    backoff_seconds: float = 1.0
    site_url: str = "http://localhost:5173"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfig":
        return cls(
            init_timeout_seconds=settings.AUTH_INIT_TIMEOUT_SECONDS,
            max_retries=settings.AUTH_INIT_MAX_RETRIES,
            backoff_seconds=settings.AUTH_RETRY_BACKOFF_SECONDS,
            site_url=settings.SITE_URL.rstrip("/"),
        )


def _is_connectivity_error(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.is_connectivity


class SessionStore:
    """
    State for one session. `backend` is the service-role client used for
    token checks and the profile table; `auth_backend` is an anon client of
    this store's own, used for password and OAuth flows.
    """

    def __init__(
        self,
        backend: BackendClient,
        auth_backend: BackendClient,
        cache: ProfileCache,
        config: SessionConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._auth_backend = auth_backend
        self._cache = cache
        self._config = config or SessionConfig()
        self._sleep = sleep

        self._state = SessionState.INITIALIZING
        self._user: AuthenticatedUser | None = None
        self._profile: UserProfile | None = None
        self._access_token: str | None = None
        self._attempts = 0
        self._closed = False
        self._history: list[SessionState] = [SessionState.INITIALIZING]
        self._listeners: list[Listener] = []
        self._executor: ThreadPoolExecutor | None = None
        self._subscription: Any = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user(self) -> AuthenticatedUser | None:
        return self._user

    @property
    def profile(self) -> UserProfile | None:
        return self._profile

    @property
    def is_admin(self) -> bool:
        return self._profile is not None and self._profile.role is Role.ADMIN

    @property
    def loading(self) -> bool:
        return self._state is SessionState.INITIALIZING

    @property
    def loading_error(self) -> bool:
        return self._state in (SessionState.TIMED_OUT, SessionState.FAILED)

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def history(self) -> tuple[SessionState, ...]:
        return tuple(self._history)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            user=self._user,
            profile=self._profile,
            is_admin=self.is_admin,
            loading=self.loading,
            loading_error=self.loading_error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self) -> None:
        """Start receiving auth notifications from this store's auth client."""
        if self._subscription is None:
            self._subscription = self._auth_backend.auth.on_auth_state_change(self.handle_auth_event)

    def close(self) -> None:
        """Stop applying results. In-flight requests are not cancelled."""
        self._closed = True
        self._listeners.clear()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def initialize(self, access_token: str | None = None) -> SessionSnapshot:
        if access_token is not None:
            self._access_token = access_token
        self._transition(SessionState.INITIALIZING)

        retrying = Retrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=wait_exponential(multiplier=self._config.backoff_seconds, max=2 * self._config.backoff_seconds),
            retry=retry_if_exception(_is_connectivity_error),
            before_sleep=self._on_attempt_failed,
            reraise=True,
        )
        try:
            user = retrying(self._retrieve_user)
        except BackendError as exc:
            logger.error("Session initialization failed after %d attempt(s): %s", self._attempts, exc.message)
            self._transition(SessionState.FAILED)
            return self.snapshot()

        self._apply_user(user)
        return self.snapshot()

    def retry_connection(self) -> SessionSnapshot:
        logger.info("Retrying connection to the auth service")
        self._attempts = 0
        self._transition(SessionState.INITIALIZING)
        return self.initialize()

    def handle_auth_event(self, event: str, session: Any) -> None:
        """Apply an auth notification; events are handled in delivery order."""
        if self._closed:
            return
        logger.info("Auth event received: %s", event)

        supa_user = getattr(session, "user", None) if session is not None else None
        if event == SIGNED_OUT or supa_user is None:
            self._access_token = None
            self._user = None
            self._set_profile(None)
            self._transition(SessionState.UNAUTHENTICATED)
            return

        token = getattr(session, "access_token", None)
        if token:
            self._access_token = token
        user = AuthenticatedUser.from_supabase(supa_user)
        if (
            event != USER_UPDATED
            and self._state is SessionState.AUTHENTICATED
            and self._user is not None
            and self._user.id == user.id
        ):
            return
        self._apply_user(user)

    def fetch_profile(self, user: AuthenticatedUser) -> UserProfile:
        """Resolve the profile for `user`. Never raises on backend failures."""
        cached = self._cache.get(user.id)
        if cached is not None:
            logger.info("Using cached profile for %s while fetching", user.id)
            self._set_profile(cached)

        query = self._backend.table(PROFILES_TABLE).select("*").eq("user_id", user.id).single()
        try:
            response = self._backend.execute(query)
        except BackendError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return self._create_default_profile(user)
            logger.error("Profile query failed for %s: %s", user.id, exc.message)
            if cached is not None:
                logger.info("Falling back to cached profile for %s", user.id)
                return cached
            profile = UserProfile.default_for(user)
            self._cache.save(profile)
            return profile

        profile = UserProfile.from_row(response.data or {}, user)
        self._cache.save(profile)
        return profile

    def refresh_profile(self) -> UserProfile | None:
        if self._user is None or self._closed:
            return None
        profile = self.fetch_profile(self._user)
        self._set_profile(profile)
        return profile

    def _create_default_profile(self, user: AuthenticatedUser) -> UserProfile:
        profile = UserProfile.default_for(user)
        logger.info("No profile row for %s; creating default", user.id)
        try:
            self._backend.execute(self._backend.table(PROFILES_TABLE).insert(profile.to_row()))
        except BackendError as exc:
            if exc.kind is ErrorKind.DUPLICATE:
                logger.info("Profile row for %s was created concurrently", user.id)
            else:
                logger.warning("Failed to create default profile for %s: %s", user.id, exc.message)
        self._cache.save(profile)
        return profile

    def sign_in(self, email: str, password: str) -> Any:
        logger.info("Signing in %s", email)
        auth = self._auth_backend.auth
        try:
            response = self._auth_backend.run(auth.sign_in_with_password, {"email": email, "password": password})
        except BackendError as exc:
            logger.warning("Sign-in failed for %s: %s", email, exc.message)
            raise
        self.handle_auth_event(SIGNED_IN, response.session)
        return response.session

    def sign_up(self, email: str, password: str, name: str, phone: str | None = None) -> Any:
        logger.info("Registering %s", email)
        auth = self._auth_backend.auth
        response = self._auth_backend.run(
            auth.sign_up,
            {"email": email, "password": password, "options": {"data": {"name": name, "phone": phone}}},
        )
        if response.user is None:
            return response

        profile = UserProfile(id=str(response.user.id), email=email, role=Role.USER, name=name, phone=phone)
        # A SIGNED_IN notification may already have created the default row.
        query = self._backend.table(PROFILES_TABLE).upsert(profile.to_row(), on_conflict="user_id")
        try:
            self._backend.execute(query)
        except BackendError as exc:
            logger.error("Failed to save profile for %s: %s", email, exc.message)
            return response

        self._cache.save(profile)
        if self._user is not None and self._user.id == profile.id:
            self._set_profile(profile)
        return response

    def sign_in_with_provider(self, provider: str, redirect_to: str | None = None) -> str:
        logger.info("Starting OAuth sign-in with %s", provider)
        auth = self._auth_backend.auth
        response = self._auth_backend.run(
            auth.sign_in_with_oauth,
            {"provider": provider, "options": {"redirect_to": redirect_to or f"{self._config.site_url}/dashboard"}},
        )
        return response.url

    def sign_out(self) -> None:
        logger.info("Signing out")
        if self._access_token:
            self._backend.run(self._backend.auth.admin.sign_out, self._access_token)
        self._auth_backend.run(self._auth_backend.auth.sign_out)
        self.handle_auth_event(SIGNED_OUT, None)

    def reset_password(self, email: str) -> None:
        logger.info("Sending password recovery email to %s", email)
        auth = self._auth_backend.auth
        self._auth_backend.run(
            auth.reset_password_for_email,
            email,
            {"redirect_to": f"{self._config.site_url}/reset-password"},
        )

    def update_password(self, password: str) -> None:
        if self._user is None:
            raise BackendError(ErrorKind.AUTH, "You must be signed in to change the password.")
        logger.info("Updating password for %s", self._user.id)
        self._backend.run(self._backend.auth.admin.update_user_by_id, self._user.id, {"password": password})

    def _retrieve_user(self) -> AuthenticatedUser | None:
        self._attempts += 1
        self._transition(SessionState.INITIALIZING)
        logger.info("Retrieving session (attempt %d)", self._attempts)
        try:
            if self._access_token:
                return self._with_deadline(self._backend.get_user, self._access_token)
            return self._with_deadline(self._auth_backend.get_user, None)
        except BackendError as exc:
            if exc.kind is ErrorKind.AUTH:
                logger.info("Access token rejected: %s", exc.message)
                self._access_token = None
                return None
            raise

    def _with_deadline(self, fn: Callable[..., Any], *args) -> Any:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.max_retries + 1,
                thread_name_prefix="session-init",
            )
        future = self._executor.submit(fn, *args)
        timeout = self._config.init_timeout_seconds
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            raise BackendError(ErrorKind.TIMEOUT, f"No response from the auth service within {timeout:g}s.") from None

    def _on_attempt_failed(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Session retrieval attempt %d failed (%s); retrying in %.1fs",
            retry_state.attempt_number,
            getattr(exc, "message", exc),
            delay,
        )
        self._transition(SessionState.TIMED_OUT)

    def _apply_user(self, user: AuthenticatedUser | None) -> None:
        if self._closed:
            return
        if user is None:
            self._user = None
            self._set_profile(None)
            self._transition(SessionState.UNAUTHENTICATED)
            return

        self._user = user
        profile = self.fetch_profile(user)
        if self._closed:
            return
        self._set_profile(profile)
        self._transition(SessionState.AUTHENTICATED)

    def _set_profile(self, profile: UserProfile | None) -> None:
        if self._closed:
            return
        self._profile = profile
        self._notify()

    def _transition(self, state: SessionState) -> None:
        if self._closed or state is self._state:
            return
        logger.info("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        self._history.append(state)
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)
