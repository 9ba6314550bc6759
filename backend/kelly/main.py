import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kelly import database
from kelly.core.config import settings
from kelly.core.errors import StorageFailure
from kelly.api.v1.api import api_router
from kelly.services.aggregation import build_registry

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await database.init_db()
        session_maker = await database.get_session_maker()
        app.state.aggregators = build_registry(session_maker)
        logger.info("Database initialized successfully")
    except Exception:
        # For Lambda, requests get a 503 until the database is reachable
        logger.error("Database initialization failed", exc_info=True)
    else:
        try:
            await app.state.aggregators.cache.purge_expired()
        except StorageFailure as e:
            logger.warning(f"Expired insight purge skipped: {e.message}")
    yield
    # Shutdown
    await database.close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.VERSION}


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.APP_NAME}"}


# Lambda handler for AWS deployment
from mangum import Mangum  # noqa: E402
lambda_handler = Mangum(app, lifespan="on")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
