from fastapi import Request

from marketbridge.services.image_store import ImageStore
from marketbridge.services.listing_service import ListingService


def get_listing_service(request: Request) -> ListingService:
    return request.app.state.listing_service


def get_image_store(request: Request) -> ImageStore:
    return request.app.state.image_store
