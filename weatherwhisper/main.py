"""FastAPI application setup for WeatherWhisper."""

import os

from fastapi import FastAPI

from .api import router as api_router
from utils.logging_utils import setup_logging

setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="WeatherWhisper")


@app.get("/healthz")
def healthz():
    """Liveness probe."""
    return {"status": "ok"}


# API routes
app.include_router(api_router, prefix="/v1")
