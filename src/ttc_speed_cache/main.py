# src/ttc_speed_cache/main.py
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from ttc_speed_cache.collector import build_driver
from ttc_speed_cache.config import settings
from ttc_speed_cache.store import build_store
from ttc_speed_cache.trigger_routes import router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = build_store(settings)
    async with httpx.AsyncClient() as http:
        app.state.store = store
        app.state.driver = build_driver(http, store, settings)
        logger.info(
            "Collector ready (%s storage, %s partitions)",
            settings.storage_backend,
            store.granularity.value,
        )
        yield
    logger.info("Shutdown complete")


app = FastAPI(
    title="ttc speed cache",
    description="Samples the TTC vehicle-location feed once per trigger and stores "
    "per-route average speeds as msgpack partitions.",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


@app.get("/health", tags=["system"])
def health(request: Request):
    store = request.app.state.store
    return {
        "status": "ok",
        "storage": type(store).__name__,
        "granularity": store.granularity.value,
    }
