import logging
import sys
import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.database import create_tables, engine

# Send app logs to the terminal; uvicorn only configures its own loggers
_app_log = logging.getLogger("app")
_app_log.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
if not _app_log.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    _app_log.addHandler(_handler)

from app.models import document  # noqa: F401,E402 - registers models
from app.api.endpoints import agents as agent_endpoints  # noqa: E402
from app.api.endpoints import documents as document_endpoints  # noqa: E402
from app.pipeline.orchestrator import create_orchestrator  # noqa: E402
from app.repositories.reference_data_repository import create_reference_data  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.orchestrator = create_orchestrator(settings, create_reference_data(settings))
    logger.info(
        "Orchestrator ready with %d agents",
        len(app.state.orchestrator.get_registered_agents()),
    )
    if settings.DATABASE_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables created")
    yield
    await engine.dispose()
    logger.info("Disconnected from the database")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

if settings.CORS_ORIGINS.strip():
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(
    agent_endpoints.router,
    prefix="/api/agents",
    tags=["agents"],
)

app.include_router(
    document_endpoints.router,
    prefix="/api/documents",
    tags=["documents"],
)


@app.get("/")
def root():
    return {
        "app_name": settings.APP_NAME,
        "app_version": settings.APP_VERSION,
        "debug": settings.DEBUG,
    }


@app.get("/health")
async def health():
    """
    Liveness for load balancers and containers.
    200 with database status; 503 if the database is unreachable
    while pipeline results are being persisted.
    """
    if not settings.PERSIST_PIPELINE_RESULTS:
        return {"status": "ok", "database": "disabled"}
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}
    except Exception as e:
        logger.warning("Health check failed: %s", e)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "error", "detail": str(e)},
        )


def start():
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
