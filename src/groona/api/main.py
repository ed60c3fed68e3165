from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .errors import register_error_handlers
from .routers.assistant import router as assistant_router
from ..config import get_settings
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (GEMINI_API_KEY, OPENROUTER_API_KEY, etc.)

app = FastAPI(title="Groona Assistant API", version="0.1.0")

logging.basicConfig(level=logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

register_error_handlers(app)

# Routers
app.include_router(assistant_router)

# Also expose the same routers under /api, the prefix the web client calls
app.include_router(assistant_router, prefix="/api")

# CORS (for the Vite dev server on localhost:5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": settings.store_impl,
            "gemini": "configured" if settings.gemini_api_key else "missing_key",
            "openrouter": "configured" if settings.openrouter_api_key else "missing_key",
        },
    }


@app.get("/")
def root():
    return {"name": "Groona Assistant API", "version": "0.1.0"}


@app.get("/health")
def health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api/health")
def api_health():
    return _health()
