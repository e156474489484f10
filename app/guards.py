"""
Route guards: which browser routes a session may see.

`evaluate` is a pure function of a session snapshot and a path; the FastAPI
dependencies in `dependencies.py` translate its decisions into HTTP errors.
"""

from enum import Enum

from pydantic import BaseModel

from .schemas.auth import SessionSnapshot, SessionState

LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"


class Area(str, Enum):
    GUEST = "guest"          # login/register: signed-in users are sent to the dashboard
    PUBLIC = "public"
    PROTECTED = "protected"
    ADMIN = "admin"


class Action(str, Enum):
    RENDER = "render"
    LOADING = "loading"
    RETRY = "retry"
    REDIRECT = "redirect"


ROUTES: dict[str, Area] = {
    "/login": Area.GUEST,
    "/register": Area.GUEST,
    "/reset-password": Area.PUBLIC,
    "/system-error": Area.PUBLIC,
    "/dashboard": Area.PROTECTED,
    "/vehicles/new": Area.PROTECTED,
    "/admin": Area.ADMIN,
    "/admin/brands": Area.ADMIN,
    "/admin/models": Area.ADMIN,
}


class GuardDecision(BaseModel):
    path: str
    area: Area | None = None
    action: Action
    redirect_to: str | None = None
    show_retry: bool = False


def area_for(path: str) -> Area | None:
    bare = path.split("?", 1)[0].strip().strip("/")
    return ROUTES.get("/" + bare)


def evaluate(snapshot: SessionSnapshot, path: str) -> GuardDecision:
    area = area_for(path)
    if area is None:
        return GuardDecision(path=path, action=Action.REDIRECT, redirect_to=LOGIN_PATH)
    return GuardDecision(path=path, area=area, **_decide(snapshot, area))


def _decide(snapshot: SessionSnapshot, area: Area) -> dict:
    if snapshot.state is SessionState.INITIALIZING:
        return {"action": Action.LOADING}
    if snapshot.state in (SessionState.TIMED_OUT, SessionState.FAILED):
        return {"action": Action.RETRY, "show_retry": True}

    signed_in = snapshot.user is not None
    if area is Area.PUBLIC:
        return {"action": Action.RENDER}
    if area is Area.GUEST:
        if signed_in:
            return {"action": Action.REDIRECT, "redirect_to": DASHBOARD_PATH}
        return {"action": Action.RENDER}
    if not signed_in:
        return {"action": Action.REDIRECT, "redirect_to": LOGIN_PATH}
    if area is Area.ADMIN and not snapshot.is_admin:
        return {"action": Action.REDIRECT, "redirect_to": DASHBOARD_PATH}
    return {"action": Action.RENDER}
