import logging

from fastapi import APIRouter, Depends

from ..dependencies import get_profile_cache, require_session
from ..schemas.auth import StatusOut
from ..services.profile_cache import ProfileCache
from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["system"])


@router.post("/reset", response_model=StatusOut)
def emergency_reset(
    store: SessionStore = Depends(require_session),
    cache: ProfileCache = Depends(get_profile_cache),
):
    """Emergency reset from the system error screen: drop the caller's cached profile."""
    logger.warning("Emergency reset requested by %s", store.user.id)
    cache.discard(store.user.id)
    return {"status": "reset", "detail": "Local session data cleared. Please sign in again."}
