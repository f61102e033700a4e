from __future__ import annotations

import argparse
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
import uvicorn

from server.refscout.cli import add_runtime_args, apply_runtime_overrides
from server.refscout.core.cache import Cache
from server.refscout.core.config import Settings
from server.refscout.core.db import init_db
from server.refscout.pipeline.resolve import build_resolver
from server.refscout.routes import health, resolve


def create_app(settings: Settings | None = None) -> FastAPI:
    if settings is None:
        load_dotenv()
        settings = Settings.from_env()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    if settings.cache_enabled and settings.cache_backend == "sql":
        init_db(settings)

    app = FastAPI(title="refscout", version="0.1.0")
    app.state.settings = settings
    app.state.cache = Cache(settings=settings)
    app.state.resolver = build_resolver(settings, app.state.cache)

    app.include_router(health.router)
    app.include_router(resolve.router)
    return app


if __name__ != "__main__":
    app = create_app()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the refscout reference resolution service.")
    add_runtime_args(parser)
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    load_dotenv()
    apply_runtime_overrides(args)
    reload = os.getenv("REFSCOUT_RELOAD", "").strip().lower() in {"1", "true", "yes", "y", "on"}
    # built by uvicorn after the overrides land in the environment
    uvicorn.run("server.main:create_app", factory=True, host=args.host, port=args.port, reload=reload)


if __name__ == "__main__":
    main()
