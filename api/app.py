from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_import_service
from api.routes.imports import router as imports_router
from api.routes.packages import router as packages_router
from api.routes.search import router as search_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    recovered = get_import_service().recover_stale_jobs()
    if recovered:
        logger.warning("Recovered %s import jobs interrupted by a restart", recovered)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Questions Hub Import API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(imports_router)
    app.include_router(packages_router)
    app.include_router(search_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
