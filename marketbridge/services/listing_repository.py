import json
import logging
from typing import List, Optional

from marketbridge.core.database import Database
from marketbridge.models.listing import Listing, utcnow
from marketbridge.schemas.listing import ListingRead, ListingWrite

logger = logging.getLogger(__name__)


def parse_image_names(raw: Optional[str], legacy_name: Optional[str]) -> List[str]:
    """Decode the multi-image column, falling back to the legacy single name.

    Rows written before the multi-image migration (or mangled by hand) carry
    NULL or junk in ``image_file_names``; they still have a legacy name.
    """
    if raw:
        try:
            names = json.loads(raw)
        except (TypeError, ValueError):
            names = None
        if isinstance(names, list) and names and all(isinstance(n, str) for n in names):
            return names
        logger.warning("Unreadable image_file_names value %r, using legacy column", raw)
    return [legacy_name] if legacy_name else []


def to_record(listing: Listing) -> ListingRead:
    return ListingRead(
        id=listing.id,
        title=listing.title,
        category=listing.category,
        condition=listing.condition,
        size=listing.size,
        price=listing.price,
        description=listing.description,
        image_file_names=parse_image_names(listing.image_file_names, listing.image_file_name),
        created_at=listing.created_at,
        updated_at=listing.updated_at,
    )


def _column_values(data: ListingWrite) -> dict:
    values = data.model_dump(exclude={"image_file_names"})
    values["image_file_name"] = data.image_file_names[0]
    values["image_file_names"] = json.dumps(data.image_file_names)
    return values


class ListingRepository:
    """CRUD over the listings table. Unknown ids give None/False, never raise."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def list(self) -> List[ListingRead]:
        with self.database.session() as db:
            listings = (
                db.query(Listing)
                .order_by(Listing.updated_at.desc(), Listing.id.desc())
                .all()
            )
            return [to_record(listing) for listing in listings]

    def get_by_id(self, listing_id: int) -> Optional[ListingRead]:
        with self.database.session() as db:
            listing = db.query(Listing).filter(Listing.id == listing_id).first()
            if listing is None:
                return None
            return to_record(listing)

    def create(self, data: ListingWrite) -> ListingRead:
        now = utcnow()
        with self.database.session() as db:
            listing = Listing(**_column_values(data), created_at=now, updated_at=now)
            db.add(listing)
            db.commit()
            listing_id = listing.id

        # re-read so callers see what the store actually holds
        return self.get_by_id(listing_id)

    def update(self, listing_id: int, data: ListingWrite) -> Optional[ListingRead]:
        values = _column_values(data)
        values["updated_at"] = utcnow()
        with self.database.session() as db:
            matched = (
                db.query(Listing)
                .filter(Listing.id == listing_id)
                .update(values, synchronize_session=False)
            )
            db.commit()

        if matched == 0:
            return None
        return self.get_by_id(listing_id)

    def delete(self, listing_id: int) -> bool:
        with self.database.session() as db:
            removed = (
                db.query(Listing)
                .filter(Listing.id == listing_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        return removed > 0
