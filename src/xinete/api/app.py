# src/xinete/api/app.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from xinete.api.errors import install_error_handlers
from xinete.api.routes_public import public_router
from xinete.api.security import RequestSizeLimitMiddleware
from xinete.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from xinete.config import XineteConfig, load_config
from xinete.runtime.context import AppContext
from xinete.runtime.context import build_context as _build_context
from xinete.runtime.event_log import log_event

log = logging.getLogger("xinete.api")


def build_context(cfg: XineteConfig) -> AppContext:
    """Build the runtime context for the API.

    This wrapper exists so tests can monkeypatch `xinete.api.app.build_context`
    without reaching into runtime modules.
    """
    return _build_context(cfg)


def _cors_origins(cfg: XineteConfig) -> List[str]:
    """CORS allowlist.

    Policy:
      - empty -> CORS disabled
      - wildcard "*" is rejected in XINETE_MODE=prod
    """
    origins = list(cfg.cors_origins)
    if "*" in origins:
        if cfg.is_prod:
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in XINETE_CORS_ORIGINS."
            )
        return ["*"]
    return origins


def create_app(*, boot_runtime: bool = True, cfg: Optional[XineteConfig] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build + initialize the AppContext and attach it as
        app.state.ctx; it is closed on lifespan shutdown
      - False: no runtime (health still answers; other routes return not_ready)
    """
    configure_structured_logging()
    c = cfg or load_config()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        yield
        ctx = getattr(app.state, "ctx", None)
        if ctx is not None:
            ctx.close()
            log_event(log, "context_closed")

    if c.is_prod:
        app = FastAPI(title="Xinete API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="Xinete API", lifespan=_lifespan)

    app.state.cfg = c
    app.state.ctx = None
    if boot_runtime:
        ctx = build_context(c)
        ctx.initialize()
        app.state.ctx = ctx

    # --- Middleware ---
    app.add_middleware(RequestSizeLimitMiddleware, upload_max_bytes=c.max_upload_bytes)

    cors_origins = _cors_origins(c)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials="*" not in cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # outermost: logs every request including rejected ones
    app.add_middleware(RequestLogMiddleware)

    install_error_handlers(app)
    app.include_router(public_router)
    return app
