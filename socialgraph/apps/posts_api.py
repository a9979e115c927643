"""
Posts service — entry point (`uvicorn socialgraph.apps.posts_api:app`).

Owns posts and their engagement; serves the ranked feed. Author identities
come from the users service through the IdentityClient.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create the posts-service tables if not present
  3. Start the identity client (HTTP pool to the users service)
  4. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from socialgraph.apps.common import configure_logging, install_common
from socialgraph.clients.identity_client import IdentityClient
from socialgraph.config import settings
from socialgraph.database import init_db
from socialgraph.models.posts import POSTS_TABLES
from socialgraph.routers import posts
from socialgraph.telemetry import instrument_app, setup_tracing

configure_logging()
logger = logging.getLogger(__name__)

setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of the DB schema and the identity client."""
    logger.info("Starting posts service (env=%s)", settings.environment)

    await init_db(POSTS_TABLES)
    identity_client = IdentityClient()
    await identity_client.start()
    app.state.identity_client = identity_client

    logger.info("Posts service ready (identity → %s).", identity_client.base_url)
    yield

    logger.info("Shutting down...")
    await identity_client.stop()


app = FastAPI(
    title="Posts Service",
    description="Posts, engagement and the ranked feed.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(posts.router, prefix="/posts", tags=["Posts"])

install_common(app)

instrument_app(app)
