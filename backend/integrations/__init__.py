"""External API integrations.

This package contains:
- Asset store protocol: Common interface for remote media stores
- Cloudinary client: Integration with the Cloudinary Admin and Upload APIs
"""

from integrations.asset_store_protocol import (
    AssetStoreClient,
    StoreAsset,
    StorePage,
)
from integrations.cloudinary_client import CloudinaryClient

__all__ = [
    "AssetStoreClient",
    "CloudinaryClient",
    "StoreAsset",
    "StorePage",
]
