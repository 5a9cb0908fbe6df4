import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from masterypath.api import curriculum_routes
from masterypath.api import student_routes
from masterypath.api import teacher_routes
from masterypath.core.config import get_settings
from masterypath.db.memory_store import get_store

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("masterypath")


# ── Lifespan ──────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle for the mastery engine."""
    logger.info("%s starting up (mastery threshold %.2f)", settings.APP_NAME, settings.MASTERY_THRESHOLD)
    store = get_store()
    logger.info("✓ In-memory store ready (%d knowledge components)", len(store.curriculum))

    yield  # ← Application serves requests here

    logger.info("%s shutting down", settings.APP_NAME)


# ── App ───────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    description="Bayesian knowledge tracing, prerequisite-aware learning paths and teacher intervention ranking",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS: local dev frontends only
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────
app.include_router(student_routes.router, prefix="/api/students", tags=["Students"])
app.include_router(curriculum_routes.router, prefix="/api/curriculum", tags=["Curriculum"])
app.include_router(teacher_routes.router, prefix="/api/teacher", tags=["Teacher Dashboard"])


@app.get("/")
async def root():
    """Root endpoint: service banner"""
    return {
        "message": settings.APP_NAME,
        "status": "operational",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    stats = get_store().curriculum.get_stats()
    return {
        "service": "masterypath",
        "status": "healthy",
        "knowledge_components": stats["total_components"],
        "curriculum_acyclic": stats["is_acyclic"],
    }


if __name__ == "__main__":
    import uvicorn
    logger.info("API docs available at http://localhost:8000/docs")
    uvicorn.run(app, host="0.0.0.0", port=8000)
