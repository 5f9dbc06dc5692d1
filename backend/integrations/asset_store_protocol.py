"""Asset store protocol definitions.

Defines the normalized resource shape and the interface every asset
store client (Cloudinary, or an in-memory fake in tests) implements.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


@dataclass
class StoreAsset:
    """Normalized resource metadata from the asset store."""

    external_id: str  # Provider public id
    resource_type: str  # "image" | "video" | "raw"
    filename: str  # Original filename without folder
    folder: str | None = None
    format: str | None = None  # File extension reported by the store
    byte_size: int | None = None
    checksum: str | None = None  # Provider etag
    version: int | None = None  # Monotonic provider version
    secure_url: str | None = None
    tags: list[str] = field(default_factory=list)
    context: dict = field(default_factory=dict)  # Custom metadata (correlation id lives here)
    created_at: datetime | None = None
    raw_data: dict | None = None  # Raw provider response for debugging


@dataclass
class StorePage:
    """One page of a cursor-paginated listing."""

    assets: list[StoreAsset]
    next_cursor: str | None = None


class AssetStoreClient(Protocol):
    """Interface to the external asset store.

    Every method may raise a subclass of
    :class:`~integrations.exceptions.AssetStoreError`.
    """

    @property
    def store_name(self) -> str:
        """Return the store name (e.g. 'Cloudinary')."""
        ...

    def is_configured(self) -> bool:
        """Check if credentials are present."""
        ...

    def create(
        self,
        content: bytes,
        filename: str,
        folder: str | None = None,
        resource_type: str = "auto",
        tags: list[str] | None = None,
        context: dict | None = None,
    ) -> StoreAsset:
        """Upload bytes and return the stored resource's metadata."""
        ...

    def delete(self, external_id: str, resource_type: str = "image") -> bool:
        """Delete a resource.

        Returns:
            True if the resource was deleted, False if it did not exist.
        """
        ...

    def get(self, external_id: str, resource_type: str = "image") -> StoreAsset:
        """Fetch one resource.

        Raises:
            AssetNotFoundError: If the resource does not exist.
        """
        ...

    def list_page(self, cursor: str | None = None, page_size: int = 500) -> StorePage:
        """Fetch one page of resources starting at ``cursor``."""
        ...
