"""
Top-level router: public probes plus the authenticated chat API.
"""

from fastapi import APIRouter, Depends

from ..core.config import get_settings
from ..core.dependencies import get_user
from ..core.flags import get_flags
from .chat import assets_router, chat_router
from .conversations import conversations_router

router = APIRouter()


# ── Public ──────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "atelier"}


@router.get("/auth/config")
async def auth_config():
    """Tells the frontend which login flow to run."""
    if not get_flags().use_auth0:
        return {"auth_enabled": False, "mode": "dev"}
    settings = get_settings()
    if settings.auth0_domain:
        return {
            "auth_enabled": True,
            "mode": "auth0",
            "domain": settings.auth0_domain,
            "audience": settings.auth0_audience,
        }
    return {"auth_enabled": True, "mode": "token"}


# ── Chat ────────────────────────────────────────────────────────────

router.include_router(chat_router, prefix="/api/chat", dependencies=[Depends(get_user)])
router.include_router(conversations_router, prefix="/api/chat", dependencies=[Depends(get_user)])
# Images are loaded by <img> tags, which cannot send a bearer token.
router.include_router(assets_router, prefix="/api/chat")
