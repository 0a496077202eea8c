"""
FastAPI dependencies for the Council API.

The lifespan builds the engine objects once and injects them here with
``configure_council``; routers resolve them through ``Depends``.
"""
import logging

from fastapi import HTTPException

from council_engine.gateway import RealtimeGateway
from council_engine.manager import CouncilManager
from council_engine.personas import PersonaStore

logger = logging.getLogger("council.api.deps")

_manager: CouncilManager | None = None
_personas: PersonaStore | None = None
_gateway: RealtimeGateway | None = None


def configure_council(
    manager: CouncilManager | None,
    personas: PersonaStore | None,
    gateway: RealtimeGateway | None,
) -> None:
    """Called from the app lifespan (and tests) to inject instances."""
    global _manager, _personas, _gateway
    _manager = manager
    _personas = personas
    _gateway = gateway
    logger.info("Council routers configured")


def get_manager() -> CouncilManager:
    if _manager is None:
        raise HTTPException(status_code=503, detail="Council engine not initialized")
    return _manager


def get_personas() -> PersonaStore:
    if _personas is None:
        raise HTTPException(status_code=503, detail="Persona store not initialized")
    return _personas


def get_gateway() -> RealtimeGateway | None:
    return _gateway
