# tambola/routes/websocket.py
"""
WebSocket endpoints.

- /ws/games/{game_id} : flux d'une partie pour les écrans hôte et spectateurs.
  * à la connexion : {"type": "game_state"} avec la vue dérivée courante
  * à chaque commit : {"type": "game_state"} puis un {"type": "event"} par annonce nouvelle
  * {"type": "ping"} → {"type": "pong"} (heartbeat), autres messages → ACK générique
"""
from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tambola.services.live_sync import LIVE
from tambola.services.ws_manager import WS

router = APIRouter()


@router.websocket("/ws/games/{game_id}")
async def game_stream(ws: WebSocket, game_id: str):
    await ws.accept()
    if not await LIVE.join(ws, game_id):
        await ws.close(code=4404)
        return
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except ValueError:
                # Message non JSON -> ignore
                continue

            mtype = msg.get("type") if isinstance(msg, dict) else None
            if mtype == "ping":
                await WS.send_json(ws, {"type": "pong"})
            else:
                await WS.send_json(ws, {"type": "ack", "received": msg})
    except WebSocketDisconnect:
        pass
    finally:
        LIVE.leave(ws)
        await WS.disconnect(ws)
