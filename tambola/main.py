"""
Application FastAPI : point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le CORS pour le front,
- Monte tous les routeurs (REST + WebSocket),
- Configure le logging et liste les routes au démarrage,
- Arrête proprement les pilotes de partie locaux à l'arrêt.

Notes
-----
- Le middleware CORS doit être ajouté AVANT les include_router.
- Les protections hôte sont posées PAR ROUTE (Depends(host_required)) pour ne pas
  bloquer les préflights OPTIONS ni la lecture publique des spectateurs.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tambola.config.settings import settings
from tambola.routes.games import router as games_router
from tambola.routes.health import router as health_router
from tambola.routes.host import router as host_router
from tambola.routes.tickets import router as tickets_router
from tambola.routes.websocket import router as ws_router
from tambola.services.game_driver import shutdown_drivers
from tambola.services.ws_manager import WS

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(games_router)
app.include_router(tickets_router)
app.include_router(host_router)
app.include_router(ws_router)                  # WebSocket endpoint (/ws/games/{id})


@app.get("/")
async def root():
    """Ping basique : permet de vérifier que l'app tourne."""
    return {"ok": True, "service": "tambola-backend"}


@app.on_event("startup")
async def on_startup():
    """Configure le logging puis liste les routes (diagnostic)."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger.info(
        "Service starting",
        extra={"store": settings.STORE_BACKEND, "auth_provider": settings.AUTH_PROVIDER},
    )
    for r in app.routes:
        methods = getattr(r, "methods", None)
        logger.debug("Route %s %s", getattr(r, "path", "?"), sorted(methods) if methods else "WS")


@app.on_event("shutdown")
async def on_shutdown():
    await shutdown_drivers()
    await WS.close_all()
