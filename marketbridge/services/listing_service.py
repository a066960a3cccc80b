"""Create/update/delete orchestration across the database and the image store.

There is no transaction spanning both stores, so every mutation runs in two
phases: commit the authoritative row first, then reconcile image files on a
best-effort basis. A file is deleted only after the commit that stopped
referencing it, so a record never points at a missing image. The worst
leftover is an unreferenced (orphan) file.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from marketbridge.core.exceptions import ListingError, NotFoundError, ValidationError
from marketbridge.core.locks import KeyedLock
from marketbridge.schemas.listing import (
    MAX_IMAGES_PER_LISTING,
    ListingFields,
    ListingRead,
    ListingWrite,
)
from marketbridge.services.image_store import ImageStore, ImageUpload, extension_for, is_safe_name
from marketbridge.services.listing_repository import ListingRepository

logger = logging.getLogger(__name__)


def _dedupe(names: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result


def _check_uploads(uploads: Sequence[ImageUpload]) -> None:
    for upload in uploads:
        if not upload.data:
            raise ValidationError(f"Image {upload.filename or 'upload'} is empty.")
        extension_for(upload.content_type)


def _check_image_count(count: int) -> None:
    if count < 1:
        raise ValidationError("A listing must have at least one image.")
    if count > MAX_IMAGES_PER_LISTING:
        raise ValidationError(f"You can save up to {MAX_IMAGES_PER_LISTING} images.")


def _build_write(fields: ListingFields, image_file_names: List[str]) -> ListingWrite:
    try:
        return ListingWrite(**fields.model_dump(), image_file_names=image_file_names)
    except PydanticValidationError as exc:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"Invalid listing: {errors}") from exc


class ListingService:
    def __init__(
        self,
        repository: ListingRepository,
        image_store: ImageStore,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self.repository = repository
        self.image_store = image_store
        self.locks = locks or KeyedLock()

    # ---------------------------
    # reads
    # ---------------------------
    def list_listings(self) -> List[ListingRead]:
        return self.repository.list()

    def get_listing(self, listing_id: int) -> ListingRead:
        listing = self.repository.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found.")
        return listing

    # ---------------------------
    # create
    # ---------------------------
    def create_listing(self, fields: ListingFields, uploads: Sequence[ImageUpload]) -> ListingRead:
        # everything that can reject the request is checked before a byte hits disk
        _check_image_count(len(uploads))
        _check_uploads(uploads)

        new_names = self._persist_uploads(uploads)
        try:
            data = _build_write(fields, new_names)
            listing = self.repository.create(data)
        except Exception:
            self._discard(new_names)
            raise

        logger.info("Created listing %s with %d image(s)", listing.id, len(new_names))
        return listing

    # ---------------------------
    # update
    # ---------------------------
    def update_listing(
        self,
        listing_id: int,
        fields: ListingFields,
        keep: Optional[Sequence[str]] = None,
        uploads: Sequence[ImageUpload] = (),
    ) -> ListingRead:
        """Replace every field of a listing and resolve its new image set.

        ``keep`` lists the current images to retain, in the wanted order;
        names the listing does not own are dropped silently. ``None`` keeps
        all current images. New uploads are appended after the kept ones.
        """
        with self.locks.hold(listing_id):
            current = self.repository.get_by_id(listing_id)
            if current is None:
                raise NotFoundError("Listing not found.")

            _check_uploads(uploads)

            owned = set(current.image_file_names)
            requested = current.image_file_names if keep is None else keep
            kept_names = []
            for name in _dedupe(n for n in requested if n in owned):
                if is_safe_name(name):
                    kept_names.append(name)
                else:
                    # written before names were restricted, cannot be carried forward
                    logger.warning("Dropping unsafe image name %r from listing %s", name, listing_id)

            new_names = self._persist_uploads(uploads)
            final_names = _dedupe(kept_names + new_names)
            try:
                _check_image_count(len(final_names))
                data = _build_write(fields, final_names)
                listing = self.repository.update(listing_id, data)
            except Exception:
                self._discard(new_names)
                raise

            if listing is None:
                self._discard(new_names)
                raise NotFoundError("Listing not found.")

            # committed: drop the files the row no longer references
            dropped = [name for name in current.image_file_names if name not in final_names]
            self._discard(dropped)

        logger.info(
            "Updated listing %s: %d kept, %d added, %d removed",
            listing_id,
            len(kept_names),
            len(new_names),
            len(dropped),
        )
        return listing

    # ---------------------------
    # delete
    # ---------------------------
    def delete_listing(self, listing_id: int) -> None:
        with self.locks.hold(listing_id):
            current = self.repository.get_by_id(listing_id)
            if current is None:
                raise NotFoundError("Listing not found.")

            # only the database result decides whether files go away
            if not self.repository.delete(listing_id):
                raise NotFoundError("Listing not found.")

            self._discard(current.image_file_names)

        logger.info("Deleted listing %s and %d image(s)", listing_id, len(current.image_file_names))

    # ---------------------------
    # image helpers
    # ---------------------------
    def _persist_uploads(self, uploads: Sequence[ImageUpload]) -> List[str]:
        names: List[str] = []
        try:
            for upload in uploads:
                names.append(
                    self.image_store.save(upload.data, upload.filename, upload.content_type)
                )
        except Exception:
            self._discard(names)
            raise
        return names

    def _discard(self, names: Iterable[str]) -> None:
        for name in names:
            try:
                self.image_store.delete(name)
            except ListingError as exc:
                logger.warning("Could not remove image %s: %s", name, exc.message)
