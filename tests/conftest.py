from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from marketbridge.core.config import Settings
from marketbridge.core.database import Database
from marketbridge.core.schema import SchemaManager
from marketbridge.main import create_app
from marketbridge.schemas.listing import ListingFields
from marketbridge.services.image_store import ImageStore, ImageUpload
from marketbridge.services.listing_repository import ListingRepository
from marketbridge.services.listing_service import ListingService

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 32


@pytest.fixture()
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'db' / 'listings.db'}"


@pytest.fixture()
def raw_database(database_url):
    # no schema yet
    database = Database(database_url)
    yield database
    database.dispose()


@pytest.fixture()
def database(raw_database):
    SchemaManager(raw_database).ensure_schema()
    return raw_database


@pytest.fixture()
def image_store(tmp_path):
    return ImageStore(tmp_path / "uploads")


@pytest.fixture()
def repository(database):
    return ListingRepository(database)


@pytest.fixture()
def service(repository, image_store):
    return ListingService(repository, image_store)


@pytest.fixture()
def fields():
    return ListingFields(
        title="Denim jacket",
        category="Clothing",
        condition="Like new",
        size="M",
        description="Barely worn, no stains.",
        price=Decimal("45.50"),
    )


def make_upload(name="photo.png", data=PNG_BYTES, content_type="image/png"):
    return ImageUpload(data=data, filename=name, content_type=content_type)


@pytest.fixture()
def settings(tmp_path, database_url):
    return Settings(
        database_url=database_url,
        media_root=tmp_path / "uploads",
        log_level="DEBUG",
    )


@pytest.fixture()
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


def fields_of(listing):
    return ListingFields.model_validate(listing.model_dump(include=set(ListingFields.model_fields)))
