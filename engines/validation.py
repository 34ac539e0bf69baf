"""Error taxonomy for catalog, reorder, progress and import operations."""

from typing import Optional


class CatalogError(Exception):
    """Base class for errors surfaced to callers of the core."""
    pass


class NotFound(CatalogError):
    """Raised when a key references no stored entity."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class HasActiveChildren(CatalogError):
    """Raised when a soft delete is blocked by live children."""

    def __init__(self, count: int, kind: Optional[str] = None, key: Optional[str] = None):
        self.count = int(count)
        self.kind = kind
        self.key = key
        super().__init__(
            f"Cannot delete: this item has {self.count} active items inside it. "
            "Please delete them first."
        )


class InvalidMove(CatalogError):
    """Target position outside the sibling range.

    Moves treat this as a no-op; it exists so callers that want strictness
    can opt in via ``reordering.move(..., strict=True)``.
    """
    pass


class MalformedBatchInput(CatalogError):
    """Raised when a batch import payload does not match the problem schema."""
    pass


class PermissionDenied(CatalogError):
    """Raised when a non-admin attempts an authoring operation."""
    pass
