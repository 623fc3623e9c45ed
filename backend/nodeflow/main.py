import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import api_router
from .config import EngineConfig

logging.basicConfig(
    level=EngineConfig.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan: startup and shutdown events.
    """
    configured = sorted(EngineConfig.credentials_from_env())
    logger.info("Starting nodeflow (server credentials for: %s)", ", ".join(configured) or "none")

    yield

    logger.info("Shutting down nodeflow")


app = FastAPI(
    title="nodeflow",
    description="Executes graphs of AI-provider nodes: topological scheduling, prompt composition, and provider dispatch with fallback chains.",
    lifespan=lifespan,
)

# Origins are matched by regex (localhost by default)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=EngineConfig.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(api_router)
