"""
Council Personas API — persona CRUD over the file-backed store.

Endpoints:
  GET    /council/personas          — all personas
  PUT    /council/personas          — replace several existing personas
  GET    /council/personas/{role}   — one persona
  PUT    /council/personas/{role}   — replace one existing persona

Required fields: role, name, emoji, model, coreIdentity.
400 invalid payload · 404 unknown role · 500 storage failure.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from council_api.deps import get_personas
from council_engine.exceptions import CouncilValidationError, PersonaNotFoundError
from council_engine.personas import PersonaStore

logger = logging.getLogger("council.api.personas")

router = APIRouter(prefix="/council/personas", tags=["Council Personas"])


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")


@router.get("")
async def list_personas(store: PersonaStore = Depends(get_personas)) -> list[dict[str, Any]]:
    try:
        personas = await store.list_all()
    except OSError as e:
        logger.error("Failed to load personas: %s", e)
        raise HTTPException(status_code=500, detail="Failed to load personas")
    return [p.to_dict() for p in personas]


@router.put("")
async def update_personas(
    request: Request,
    store: PersonaStore = Depends(get_personas),
) -> dict[str, Any]:
    body = await _json_body(request)
    try:
        personas = await store.save_all(body)
    except CouncilValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except PersonaNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except OSError as e:
        logger.error("Failed to update personas: %s", e)
        raise HTTPException(status_code=500, detail="Failed to update personas")
    return {"success": True, "personas": [p.to_dict() for p in personas]}


@router.get("/{role}")
async def get_persona(role: str, store: PersonaStore = Depends(get_personas)) -> dict[str, Any]:
    try:
        persona = await store.get(role)
    except (PersonaNotFoundError, CouncilValidationError):
        raise HTTPException(status_code=404, detail="Persona not found")
    except OSError as e:
        logger.error("Failed to load persona %s: %s", role, e)
        raise HTTPException(status_code=500, detail="Failed to load persona")
    return persona.to_dict()


@router.put("/{role}")
async def update_persona(
    role: str,
    request: Request,
    store: PersonaStore = Depends(get_personas),
) -> dict[str, Any]:
    body = await _json_body(request)
    try:
        persona = await store.save(role, body)
    except CouncilValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except PersonaNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except OSError as e:
        logger.error("Failed to update persona %s: %s", role, e)
        raise HTTPException(status_code=500, detail="Failed to update persona")
    return {"success": True, "persona": persona.to_dict()}
