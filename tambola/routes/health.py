"""
Module routes/health.py
Rôle:
- Endpoint de santé : service OK, pilotes locaux, sockets ouvertes, pushs en cours.
"""
from fastapi import APIRouter

from tambola.config.settings import settings
from tambola.services.game_driver import list_driver_ids
from tambola.services.live_sync import LIVE
from tambola.services.ws_manager import WS

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    """Renvoie un OK minimal avec le nom de service configuré."""
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "store": settings.STORE_BACKEND,
        "drivers": len(list_driver_ids()),
        "sockets": WS.stats()["total"],
        "pending_pushes": LIVE.pending_pushes(),
    }
