from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from marketbridge.core.database import Base


def utcnow() -> datetime:
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Listing(Base):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)

    title = Column(String(255), nullable=False)
    category = Column(String(255), nullable=False)
    condition = Column(String(255), nullable=False)
    size = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=False)

    # legacy single-image column, always mirrors image_file_names[0]
    image_file_name = Column(String(255), nullable=False)
    # JSON array of names; NULL on rows written before the multi-image migration
    image_file_names = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
