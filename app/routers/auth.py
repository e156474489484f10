from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field, model_validator
import json

from ..dependencies import get_session_store, require_session
from ..schemas.auth import AuthSession, SessionSnapshot, StatusOut, UserProfile
from ..services.session_store import PROFILES_TABLE, SessionStore
from ..supabase_client import BackendClient, BackendError, get_backend

router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_PROVIDERS = {"google", "github", "facebook", "apple", "azure"}


class JsonPayload(BaseModel):
    @model_validator(mode='before')
    @classmethod
    def parse_input(cls, v):
        if isinstance(v, bytes):
            v = v.decode("utf-8")
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                pass
        return v


class LoginPayload(JsonPayload):
    email: EmailStr
    password: str


class SignupPayload(JsonPayload):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    phone: str | None = None


class ResetPasswordPayload(JsonPayload):
    email: EmailStr


class UpdatePasswordPayload(JsonPayload):
    password: str = Field(..., min_length=6)


class ProfileUpdatePayload(JsonPayload):
    name: str | None = None
    phone: str | None = None


class OAuthOut(BaseModel):
    url: str


def _session_out(store: SessionStore, session) -> AuthSession:
    return AuthSession(
        access_token=getattr(session, "access_token", None) or "",
        refresh_token=getattr(session, "refresh_token", None) or "",
        user=store.user,
        profile=store.profile,
        is_admin=store.is_admin,
    )


def _raise_for(exc: BackendError, status_code: int) -> None:
    # Connectivity problems keep their own status; everything else is the caller's fault.
    if exc.is_connectivity:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
    raise HTTPException(status_code=status_code, detail=exc.message) from exc


@router.post("/login", response_model=AuthSession)
def login(payload: LoginPayload, store: SessionStore = Depends(get_session_store)):
    try:
        session = store.sign_in(payload.email, payload.password)
    except BackendError as exc:
        _raise_for(exc, 401)
    if session is None or store.user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _session_out(store, session)


@router.post("/signup", response_model=AuthSession)
def signup(payload: SignupPayload, store: SessionStore = Depends(get_session_store)):
    try:
        res = store.sign_up(payload.email, payload.password, payload.name, payload.phone)
    except BackendError as exc:
        _raise_for(exc, 400)
    if not res.user:
        raise HTTPException(status_code=400, detail="Unable to sign up")
    return _session_out(store, res.session)


@router.post("/oauth/{provider}", response_model=OAuthOut)
def oauth(provider: str, store: SessionStore = Depends(get_session_store)):
    if provider not in OAUTH_PROVIDERS:
        raise HTTPException(status_code=400, detail=f"Unsupported provider: {provider}")
    try:
        return {"url": store.sign_in_with_provider(provider)}
    except BackendError as exc:
        _raise_for(exc, 400)


@router.post("/logout", response_model=StatusOut)
def logout(store: SessionStore = Depends(require_session)):
    try:
        store.sign_out()
    except BackendError as exc:
        _raise_for(exc, 400)
    return {"status": "signed_out"}


@router.post("/reset-password", response_model=StatusOut)
def reset_password(payload: ResetPasswordPayload, store: SessionStore = Depends(get_session_store)):
    try:
        store.reset_password(payload.email)
    except BackendError as exc:
        _raise_for(exc, 400)
    return {"status": "sent"}


@router.post("/update-password", response_model=StatusOut)
def update_password(payload: UpdatePasswordPayload, store: SessionStore = Depends(require_session)):
    try:
        store.update_password(payload.password)
    except BackendError as exc:
        _raise_for(exc, 400)
    return {"status": "updated"}


@router.get("/session", response_model=SessionSnapshot)
def session(store: SessionStore = Depends(get_session_store)):
    """Current session state; a retry-eligible state is reported, not raised."""
    return store.snapshot()


@router.post("/session/retry", response_model=SessionSnapshot)
def retry_session(store: SessionStore = Depends(get_session_store)):
    if store.loading_error:
        return store.retry_connection()
    return store.snapshot()


@router.post("/profile/refresh", response_model=SessionSnapshot)
def refresh_profile(store: SessionStore = Depends(require_session)):
    store.refresh_profile()
    return store.snapshot()


@router.get("/me", response_model=UserProfile)
def me(store: SessionStore = Depends(require_session)):
    return store.profile


@router.patch("/me", response_model=UserProfile)
def update_profile(
    payload: ProfileUpdatePayload,
    store: SessionStore = Depends(require_session),
    backend: BackendClient = Depends(get_backend),
):
    updates = {}
    if payload.name is not None:
        updates["name"] = payload.name
    if payload.phone is not None:
        updates["phone"] = payload.phone

    if updates:
        try:
            backend.execute(backend.table(PROFILES_TABLE).update(updates).eq("user_id", store.user.id))
        except BackendError as exc:
            _raise_for(exc, 400)

    return store.refresh_profile()
