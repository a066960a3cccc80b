import json
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import ValidationError as PydanticValidationError

from marketbridge.core.exceptions import ValidationError
from marketbridge.dependencies import get_listing_service
from marketbridge.schemas.listing import ListingFields, ListingRead
from marketbridge.services.image_store import ImageUpload
from marketbridge.services.listing_service import ListingService

router = APIRouter(prefix="/listings", tags=["listings"])


def _parse_price(raw: str) -> Decimal:
    # the form accepts "12,50" as well as "12.50"
    try:
        return Decimal(raw.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValidationError("Price must be a number.") from exc


def _build_fields(
    title: str,
    category: str,
    condition: str,
    size: str,
    description: str,
    price: str,
) -> ListingFields:
    try:
        return ListingFields(
            title=title,
            category=category,
            condition=condition,
            size=size,
            description=description,
            price=_parse_price(price),
        )
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"Fill in all required fields. {errors}") from exc


def _read_uploads(files: Optional[List[UploadFile]]) -> List[ImageUpload]:
    uploads: List[ImageUpload] = []
    for upload in files or []:
        data = upload.file.read()
        # browsers send an empty part when no file was picked
        if not data:
            continue
        uploads.append(
            ImageUpload(
                data=data,
                filename=upload.filename or "image",
                content_type=upload.content_type or "",
            )
        )
    return uploads


def _parse_keep(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Invalid existing images payload.") from exc
    if not isinstance(parsed, list) or any(not isinstance(item, str) for item in parsed):
        raise ValidationError("Invalid existing images payload.")
    return parsed


@router.get("/", response_model=List[ListingRead])
def list_listings(service: ListingService = Depends(get_listing_service)):
    return service.list_listings()


@router.get("/{listing_id}", response_model=ListingRead)
def get_listing(listing_id: int, service: ListingService = Depends(get_listing_service)):
    return service.get_listing(listing_id)


@router.post("/", response_model=ListingRead, status_code=status.HTTP_201_CREATED)
def create_listing(
    title: str = Form(""),
    category: str = Form(""),
    condition: str = Form(""),
    size: str = Form(""),
    description: str = Form(""),
    price: str = Form(""),
    images: Optional[List[UploadFile]] = File(None),
    service: ListingService = Depends(get_listing_service),
):
    fields = _build_fields(title, category, condition, size, description, price)
    return service.create_listing(fields, _read_uploads(images))


@router.put("/{listing_id}", response_model=ListingRead)
def update_listing(
    listing_id: int,
    title: str = Form(""),
    category: str = Form(""),
    condition: str = Form(""),
    size: str = Form(""),
    description: str = Form(""),
    price: str = Form(""),
    existing_image_file_names: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    service: ListingService = Depends(get_listing_service),
):
    fields = _build_fields(title, category, condition, size, description, price)
    return service.update_listing(
        listing_id,
        fields,
        keep=_parse_keep(existing_image_file_names),
        uploads=_read_uploads(images),
    )


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_listing(listing_id: int, service: ListingService = Depends(get_listing_service)):
    service.delete_listing(listing_id)
    return None
