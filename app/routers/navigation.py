from fastapi import APIRouter, Depends, Query

from ..dependencies import get_session_store
from ..guards import GuardDecision, evaluate
from ..services.session_store import SessionStore

router = APIRouter(prefix="/navigation", tags=["navigation"])


@router.get("", response_model=GuardDecision)
def resolve_route(
    path: str = Query(..., description="Browser path the UI is about to render"),
    store: SessionStore = Depends(get_session_store),
):
    """Tell the UI whether to render `path`, show a loading/retry screen, or redirect."""
    return evaluate(store.snapshot(), path)
