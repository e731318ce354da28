from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from answer_sync.api.routes import background
from answer_sync.config import settings
from answer_sync.errors import ReconcileError
from answer_sync.services.logger import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    yield
    # Shutdown


app = FastAPI(
    title="answer-sync",
    description="Reconciles snapshot-based answer collection jobs",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(background.router)


@app.exception_handler(ReconcileError)
async def reconcile_error_handler(request: Request, exc: ReconcileError):
    # Also covers failures while building the engine dependency.
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "answer-sync"}
