import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables from .env file before the fixit modules read them
load_dotenv()

from fastapi import Depends, FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from fastapi.staticfiles import StaticFiles  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from fixit.database.config import Base, engine, get_db  # noqa: E402
from fixit.dependencies import get_health_cache  # noqa: E402
from fixit.errors import register_error_handlers  # noqa: E402
from fixit.health import HealthCheckCache, ping_database  # noqa: E402
from fixit.middleware.timing import timing_middleware  # noqa: E402
from fixit.routes import (  # noqa: E402
    admin_router,
    auth_router,
    gamification_router,
    government_router,
    issues_router,
    notifications_router,
)
from fixit.storage import upload_dir  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    # Shutdown: Dispose of the engine
    await engine.dispose()


app = FastAPI(title="FixIt API", lifespan=lifespan)
app.state.health_cache = HealthCheckCache(ttl_seconds=float(os.getenv("HEALTH_CHECK_TTL_SECONDS", 5)))

app.middleware("http")(timing_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(levelname)s | %(name)s | %(message)s",
)

register_error_handlers(app)

app.include_router(auth_router)
app.include_router(issues_router)
app.include_router(government_router)
app.include_router(admin_router)
app.include_router(notifications_router)
app.include_router(gamification_router)

# Locally stored uploads; unused when images go to Cloudinary
app.mount("/uploads", StaticFiles(directory=upload_dir(), check_dir=False), name="uploads")


@app.get("/api/health", tags=["health"])
async def health(
    db: AsyncSession = Depends(get_db),
    cache: HealthCheckCache = Depends(get_health_cache),
):
    healthy = await cache.check(lambda: ping_database(db))
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "database": "connected" if healthy else "disconnected"},
    )
