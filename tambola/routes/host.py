"""
Routes hôte et catalogues.

- GET  /host/me        : profil de l'hôte courant (+ droit d'agir)
- POST /host/resume    : reprise automatique à la reconnexion du client hôte
- GET  /prizes/catalog : lots sélectionnables
- GET  /ticket-sets    : jeux de tickets disponibles
"""
from fastapi import APIRouter, Depends

from tambola.deps.auth import host_required
from tambola.models.host import HostUser
from tambola.routes.games import unwrap
from tambola.services.game_controller import CONTROLLER
from tambola.services.prize_catalog import PRIZES
from tambola.services.ticket_sets import list_ticket_sets

router = APIRouter(tags=["host"])


@router.get("/host/me")
async def me(host: HostUser = Depends(host_required)):
    data = host.model_dump(mode="json")
    data["can_act"] = host.can_act()
    return data


@router.post("/host/resume")
async def resume_last_game(host: HostUser = Depends(host_required)):
    return unwrap(await CONTROLLER.auto_resume(host.id))


@router.get("/prizes/catalog")
async def prizes_catalog():
    return {"prizes": PRIZES.all()}


@router.get("/ticket-sets")
async def ticket_sets():
    return {"ticket_sets": list_ticket_sets()}
