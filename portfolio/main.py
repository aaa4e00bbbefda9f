import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException

from portfolio import dependencies as deps
from portfolio.db.couchdb import CouchClient
from portfolio.repos.posts_repo import CouchPostsRepo
from portfolio.routers import blog
from portfolio.security import get_api_key
from portfolio.services.sessions import ControllerRegistry
from portfolio.settings import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Portfolio API", description="Personal portfolio and blog")


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = CouchClient(settings).open()
    repo = CouchPostsRepo(client, max_backoff=settings.SUBSCRIPTION_MAX_BACKOFF)
    registry = ControllerRegistry(repo, ttl_seconds=settings.SESSION_TTL_SECONDS)
    app.state.couch = client
    app.state.registry = registry
    logger.info("Blog service started")

    try:
        yield
    finally:
        registry.close_all()
        client.close()
        logger.info("Blog service exited gracefully")


app.router.lifespan_context = lifespan

app.include_router(blog.router)
app.include_router(blog.author_router, dependencies=[Depends(get_api_key)])
app.include_router(blog.session_router)


@app.get("/")
async def root():
    return {"message": "Portfolio API is running"}


@app.get("/health")
def health(client: CouchClient = Depends(deps.get_couch_client)):
    if not client.ping():
        raise HTTPException(status_code=503, detail="Document store unreachable")
    return {"status": "ok"}
