"""
Council Sessions API — read-only session views plus the realtime channel.

Endpoints:
  GET    /council/sessions                       — session summaries
  GET    /council/sessions/{session_id}          — full snapshot
  GET    /council/sessions/{session_id}/export   — transcript (markdown | jsonl)
  WS     /ws/council                             — realtime commands and events

All mutations go through the WebSocket; see ``council_engine.gateway``.
"""
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket
from fastapi.responses import PlainTextResponse

from council_api.deps import get_gateway, get_manager
from council_engine.exceptions import SessionNotFoundError
from council_engine.export import EXPORTERS
from council_engine.manager import CouncilManager

logger = logging.getLogger("council.api.sessions")

router = APIRouter(prefix="/council/sessions", tags=["Council Sessions"])
ws_router = APIRouter(tags=["Council WebSocket"])


@router.get("")
async def list_sessions(manager: CouncilManager = Depends(get_manager)) -> list[dict[str, Any]]:
    return manager.list_sessions()


@router.get("/{session_id}")
async def get_session(session_id: str, manager: CouncilManager = Depends(get_manager)) -> dict[str, Any]:
    try:
        return manager.snapshot(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("/{session_id}/export")
async def export_session(
    session_id: str,
    format: Literal["markdown", "jsonl"] = Query(default="markdown"),
    manager: CouncilManager = Depends(get_manager),
) -> PlainTextResponse:
    try:
        session = manager.get(session_id).session
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    exporter, media_type = EXPORTERS[format]
    try:
        content = exporter(session)
    except Exception as e:
        logger.error("Export of %s as %s failed: %s", session_id, format, e)
        raise HTTPException(status_code=500, detail="Export failed")
    extension = "md" if format == "markdown" else "jsonl"
    return PlainTextResponse(
        content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{session_id}.{extension}"'},
    )


@ws_router.websocket("/ws/council")
async def council_ws(websocket: WebSocket):
    gateway = get_gateway()
    if gateway is None:
        logger.warning("Rejecting council WebSocket: engine not initialized")
        await websocket.close(code=1013)
        return
    await gateway.handle_connection(websocket)


def register_sessions(app, dependencies: list | None = None) -> None:
    """Register both REST + WebSocket routers."""
    app.include_router(router, dependencies=dependencies)
    app.include_router(ws_router)
