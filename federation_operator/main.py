"""
Federation Operator — process entrypoint.

Sets up FastAPI with:
  - Lifespan that starts/stops the federated ingress controller
  - CORS for dashboard access
  - Rate limiting (slowapi)
  - Prometheus metrics (/metrics)
  - Health check (/health) with informer sync and Redis status
  - Federation routes (/api/ingresses, /api/clusters)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import settings
from .controller import new_ingress_controller
from .events import _get_redis
from .metrics import QUEUE_DEPTH
from .routers.ingresses import limiter, router as federation_router
from .services.kubernetes_service import federation_client, kubeconfig_client_factory

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("federation-operator")


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Federation Operator starting...")
    started_here = False
    if getattr(app.state, "controller", None) is None:
        app.state.controller = new_ingress_controller(
            federation_client(settings), kubeconfig_client_factory(settings), settings)
        app.state.controller.start()
        started_here = True
    yield
    logger.info("Federation Operator shutting down...")
    if started_here:
        app.state.controller.stop()


# --- FastAPI app ---
app = FastAPI(
    title="Federation Operator",
    description="Keeps federated ingresses converged across member clusters",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_methods=["GET"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(federation_router, prefix="/api")


# --- Health check ---
@app.get("/health")
async def health(request: Request):
    """Health check with informer sync state and Redis connectivity."""
    controller = getattr(request.app.state, "controller", None)
    redis_status = "disabled"
    r = _get_redis()
    if r:
        try:
            r.ping()
            redis_status = "connected"
        except Exception:
            redis_status = "disconnected"

    return {
        "status": "healthy" if controller is not None else "starting",
        "synced": controller.is_synced() if controller is not None else False,
        "readyClusters": len(controller.cluster_informer.get_ready_clusters()) if controller is not None else 0,
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "redis": redis_status,
        "version": __version__,
    }


# --- Prometheus metrics endpoint ---
@app.get("/metrics", response_class=PlainTextResponse)
async def metrics(request: Request):
    """Expose Prometheus metrics."""
    controller = getattr(request.app.state, "controller", None)
    if controller is not None:
        QUEUE_DEPTH.labels(queue=controller.kind).set(len(controller.queue))
    return PlainTextResponse(content=generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


# --- Global exception handler ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# --- Entry point ---
if __name__ == "__main__":
    uvicorn.run(
        "federation_operator.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
        reload=False,
    )
