import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketbridge.core.config import Settings, get_settings
from marketbridge.core.database import Database
from marketbridge.core.exceptions import NotFoundError, StorageError, ValidationError
from marketbridge.core.logging import configure_logging
from marketbridge.core.schema import SchemaManager
from marketbridge.routers import listings, uploads
from marketbridge.services.image_store import ImageStore
from marketbridge.services.listing_repository import ListingRepository
from marketbridge.services.listing_service import ListingService

logger = logging.getLogger(__name__)


def _error_handler(status_code: int):
    async def handler(request: Request, exc):
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    return handler


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- wire the stores (schema must be present before any repository call) ---
        database = Database(settings.database_url)
        SchemaManager(database).ensure_schema()

        image_store = ImageStore(settings.media_root)
        repository = ListingRepository(database)

        app.state.database = database
        app.state.image_store = image_store
        app.state.listing_service = ListingService(repository, image_store)
        logger.info("%s started (env=%s)", settings.app_name, settings.app_env)

        yield

        database.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ValidationError, _error_handler(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(NotFoundError, _error_handler(status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(StorageError, _error_handler(status.HTTP_500_INTERNAL_SERVER_ERROR))

    app.include_router(listings.router)
    # image files are served under the configured media url ("/uploads" by default)
    app.include_router(uploads.router, prefix=settings.media_url)

    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} backend is running"}

    return app


app = create_app()
