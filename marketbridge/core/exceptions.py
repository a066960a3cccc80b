class ListingError(Exception):
    """Base class for errors raised by the listing core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ListingError):
    """Input that can never be stored: bad image count, bad format, bad name."""


class UnsupportedFormatError(ValidationError):
    pass


class NotFoundError(ListingError):
    pass


class StorageError(ListingError):
    """The filesystem refused a write or delete."""


class MigrationError(ListingError):
    """Schema setup failed for a reason other than a concurrent migrator."""
