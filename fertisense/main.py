"""
FastAPI application for the FertiSense recommendation backend.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fertisense import __version__
from fertisense.config import LOG_LEVEL
from fertisense.database import Base, engine
from fertisense.models import session_models  # noqa: F401  registers kv_entries
from fertisense.routers import recommendation

logger = logging.getLogger(__name__)


def create_app(create_tables: bool = True) -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if create_tables:
        Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="FertiSense API",
        version=__version__,
        description="Soil-sensor fertilizer recommendations for rice",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(recommendation.router)

    @app.get("/api/health")
    async def health():
        return {"ok": True, "version": __version__}

    logger.info(f"FertiSense API {__version__} ready")
    return app


app = create_app()
