import os
import sys
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import metrics
from .config import Settings, get_settings
from .pipeline import JobOrchestrator, job_router, project_router
from .pipeline.storage import AssetStore
from .provider_factory import ProviderFactory

load_dotenv()

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> JobOrchestrator:
    return JobOrchestrator(
        ProviderFactory(settings),
        assets=AssetStore(settings.public_base_url),
        timeout=settings.provider_timeout,
    )


def create_app(settings: Optional[Settings] = None, orchestrator: Optional[JobOrchestrator] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Gateway starting up...")
        metrics.set_gauge("start_time", time.time())
        yield
        logger.info("Gateway shutting down...")
        await app.state.orchestrator.aclose()

    app = FastAPI(title="Creative Gateway", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator or build_orchestrator(settings)
    app.include_router(job_router)
    app.include_router(project_router)

    @app.get("/")
    def root():
        return {"status": "ok", "message": "Creative gateway running"}

    @app.get("/health")
    def health_check():
        """Report which provider credentials are configured."""
        return {
            "status": "ok",
            "gemini_api_key_set": bool(settings.gemini_api_key),
            "kie_api_key_set": bool(settings.kie_api_key),
            "service_account_set": bool(settings.service_account),
            "image_provider": settings.image_provider,
        }

    @app.get("/metrics")
    def metrics_endpoint():
        return metrics.get_snapshot()

    return app


def run():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if settings.port is None:
        logger.error("PORT is not set")
        sys.exit(1)
    if not settings.public_base_url.startswith("https://"):
        logger.warning(
            f"PUBLIC_BASE_URL {settings.public_base_url} is not https; "
            "video jobs will reject generated images as their source"
        )

    logger.info(f"Gateway listening on port {settings.port}")
    uvicorn.run(create_app(settings), host=os.getenv("HOST", "0.0.0.0"), port=settings.port)


if __name__ == "__main__":
    run()
