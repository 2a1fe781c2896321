"""Starlette application factory and ``oauth-issuer`` entry point."""

from __future__ import annotations

import logging
import os

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from oauth_issuer.servers.correlation import CorrelationIdMiddleware
from oauth_issuer.servers.endpoints import build_routes
from oauth_issuer.token_engine.service import TokenEngine
from oauth_issuer.utils.environment import EngineSettings
from oauth_issuer.utils.logging import setup_logging

logger = logging.getLogger("oauth-issuer.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(engine: TokenEngine | None = None) -> Starlette:
    """Return the ASGI application serving *engine* (built from env if omitted)."""
    engine = engine or TokenEngine.from_settings()
    routes = [Route("/healthz", health_check, methods=["GET"])]
    routes.extend(build_routes(engine, base_path=engine.settings.base_path))
    app = Starlette(routes=routes, middleware=[Middleware(CorrelationIdMiddleware)])
    app.state.engine = engine
    logger.info("OAuth endpoints mounted under %s", engine.settings.endpoint_base)
    return app


def main() -> None:
    setup_logging()
    settings = EngineSettings.from_env()
    app = create_app(TokenEngine.from_settings(settings))
    uvicorn.run(
        app,
        host=os.getenv("OAUTH_ISSUER_HOST", "0.0.0.0"),
        port=int(os.getenv("OAUTH_ISSUER_PORT", "8080")),
    )


if __name__ == "__main__":
    main()
