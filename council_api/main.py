"""
Council API — FastAPI application.

Run:
    council-api                      # console script
    uvicorn council_api.main:app     # or any ASGI server
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from council_api import __version__
from council_api.deps import configure_council
from council_api.routers.personas import router as personas_router
from council_api.routers.sessions import register_sessions
from council_api.routers.templates import router as templates_router
from council_engine.config import EngineConfig
from council_engine.events import EventBus
from council_engine.export import IdeaBankExporter
from council_engine.gateway import RealtimeGateway
from council_engine.generator import UtteranceGenerator, build_generator
from council_engine.logging_config import configure_logging
from council_engine.manager import CouncilManager
from council_engine.personas import PersonaStore

logger = logging.getLogger("council.api")


def create_app(
    config: EngineConfig | None = None,
    generator: UtteranceGenerator | None = None,
) -> FastAPI:
    """
    Build the application. ``config`` and ``generator`` default to the
    environment configuration and the configured backend.
    """
    config = config or EngineConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level, debug=config.debug)

        personas = PersonaStore(config.personas_path)
        gen = generator or build_generator(config)
        exporter = IdeaBankExporter(config.idea_bank_url) if config.idea_bank_url else None
        bus = EventBus()
        manager = CouncilManager(config, personas, gen, bus, exporter=exporter)
        gateway = RealtimeGateway(config, manager, bus)
        configure_council(manager, personas, gateway)

        app.state.config = config
        app.state.manager = manager
        app.state.gateway = gateway
        logger.info(
            "Council API %s started (backend=%s, roles=%d)",
            __version__, config.generator_backend, len(config.council_roles),
        )
        try:
            yield
        finally:
            await manager.shutdown()
            if exporter is not None:
                await exporter.aclose()
            if generator is None:
                await gen.aclose()
            configure_council(None, None, None)
            logger.info("Council API stopped")

    app = FastAPI(
        title="Council API",
        description="Real-time, round-based multi-agent council sessions.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    @app.get("/health", tags=["Health"])
    async def health() -> dict:
        manager = getattr(app.state, "manager", None)
        gateway = getattr(app.state, "gateway", None)
        return {
            "status": "ok" if manager is not None else "starting",
            "version": __version__,
            "sessions": len(manager) if manager is not None else 0,
            "connections": gateway.active_connections if gateway is not None else 0,
        }

    app.include_router(templates_router)
    app.include_router(personas_router)
    register_sessions(app)
    return app


app = create_app()


def main() -> None:
    config = EngineConfig.from_env()
    uvicorn.run(
        "council_api.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
