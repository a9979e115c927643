"""
Users service — entry point (`uvicorn socialgraph.apps.users_api:app`).

Owns profiles, the friendship ledger and the group membership ledger, and
answers identity lookups for the other services.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create the users-service tables if not present
  3. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from socialgraph.apps.common import configure_logging, install_common
from socialgraph.config import settings
from socialgraph.database import init_db
from socialgraph.models.users import USERS_TABLES
from socialgraph.routers import friends, groups, internal, users
from socialgraph.telemetry import instrument_app, setup_tracing

configure_logging()
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting users service (env=%s)", settings.environment)
    await init_db(USERS_TABLES)
    logger.info("Users service ready.")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Users Service",
    description="Profiles, friendships and groups.",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router)
app.include_router(friends.router, prefix="/friends", tags=["Friends"])
app.include_router(groups.router, prefix="/groups", tags=["Groups"])
app.include_router(internal.router, prefix="/internal", tags=["Internal"])

install_common(app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)
