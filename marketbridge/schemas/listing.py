from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from marketbridge.services.image_store import is_safe_name

MAX_IMAGES_PER_LISTING = 10


class ListingFields(BaseModel):
    """The user-editable part of a listing, minus its images."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=255)
    condition: str = Field(min_length=1, max_length=255)
    size: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2, allow_inf_nan=False)


class ListingWrite(ListingFields):
    """A complete record as handed to the repository on create and update."""

    image_file_names: List[str] = Field(min_length=1, max_length=MAX_IMAGES_PER_LISTING)

    @field_validator("image_file_names")
    @classmethod
    def _check_image_names(cls, names: List[str]) -> List[str]:
        if len(set(names)) != len(names):
            raise ValueError("image file names must be unique")
        for name in names:
            if not is_safe_name(name):
                raise ValueError(f"invalid image file name: {name!r}")
        return names


class ListingRead(BaseModel):
    id: int
    title: str
    category: str
    condition: str
    size: str
    price: Decimal
    description: str
    image_file_names: List[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def primary_image(self) -> Optional[str]:
        return self.image_file_names[0] if self.image_file_names else None
