"""
Council Templates API — round template catalog.

Endpoints:
  GET    /council/templates   — built-in templates (standard, quick, freeForAll)
  POST   /council/templates   — validate a custom template and echo it back

Custom templates are not persisted; clients pass their rounds to ``create``
as ``customRounds``.
"""
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from council_engine.exceptions import CouncilValidationError
from council_engine.templates import get_templates, parse_rounds

logger = logging.getLogger("council.api.templates")

router = APIRouter(prefix="/council/templates", tags=["Council Templates"])


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")


@router.get("")
async def list_templates() -> dict[str, Any]:
    return get_templates()


@router.post("")
async def validate_template(request: Request) -> dict[str, Any]:
    body = await _json_body(request)
    try:
        if not isinstance(body, dict) or not body.get("name") or not isinstance(body.get("name"), str):
            raise CouncilValidationError("Invalid template data", details="name is required")
        if not isinstance(body.get("rounds"), list) or not body["rounds"]:
            raise CouncilValidationError("Invalid template data", details="rounds must be a non-empty list")
        rounds = parse_rounds(body["rounds"])
    except CouncilValidationError as e:
        detail = f"{e.message}: {e.details}" if e.details else e.message
        raise HTTPException(status_code=400, detail=detail)
    except Exception as e:
        logger.error("Template validation failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to create template")

    return {
        "success": True,
        "template": {
            "name": body["name"],
            "description": body.get("description"),
            "rounds": [r.to_dict() for r in rounds],
        },
    }
