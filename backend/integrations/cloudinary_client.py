"""Cloudinary REST API client.

Implements the AssetStoreClient protocol against Cloudinary's upload and
admin APIs using plain ``httpx`` requests. Upload and destroy calls are
signed with the API secret; admin and search calls use HTTP basic auth.
"""

import hashlib
import logging
import time
from datetime import datetime
from pathlib import PurePosixPath

import httpx

from config import settings
from integrations.asset_store_protocol import StoreAsset, StorePage
from integrations.exceptions import (
    AssetNotFoundError,
    AssetStoreAPIError,
    AssetStoreAuthError,
    AssetStoreConnectionError,
    AssetStoreDataError,
)

logger = logging.getLogger(__name__)

STORE_NAME = "Cloudinary"

# Parameters Cloudinary excludes when computing an API signature
_UNSIGNED_PARAMS = frozenset({"file", "api_key", "resource_type", "cloud_name"})


def sign_params(params: dict, api_secret: str) -> str:
    """Compute a Cloudinary API signature.

    The signature is the SHA-1 hex digest of the sorted ``key=value``
    pairs joined by ``&``, with the API secret appended.

    Args:
        params: Request parameters (unsigned keys are ignored).
        api_secret: The account API secret.

    Returns:
        Hex-encoded SHA-1 signature.
    """
    to_sign = "&".join(
        f"{key}={value}"
        for key, value in sorted(params.items())
        if key not in _UNSIGNED_PARAMS and value not in (None, "")
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def _encode_context(context: dict) -> str:
    """Encode a context dict as Cloudinary's ``key=value|key=value`` form."""
    parts = []
    for key, value in context.items():
        escaped = str(value).replace("|", r"\|").replace("=", r"\=")
        parts.append(f"{key}={escaped}")
    return "|".join(parts)


def _parse_datetime(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def extract_context(resource: dict) -> dict:
    """Return the custom context of a resource as a flat dict.

    Upload responses and webhooks nest custom values under
    ``context.custom``; search results return them flat under ``context``.
    """
    context = resource.get("context") or {}
    if not isinstance(context, dict):
        return {}
    custom = context.get("custom")
    if isinstance(custom, dict):
        return dict(custom)
    return dict(context)


def parse_resource(resource: dict) -> StoreAsset:
    """Normalize a Cloudinary resource dict into a :class:`StoreAsset`.

    Used for upload responses, admin/search results and webhook payloads.

    Raises:
        AssetStoreDataError: If the resource has no ``public_id``.
    """
    if not isinstance(resource, dict) or not resource.get("public_id"):
        raise AssetStoreDataError("Resource is missing public_id", store_name=STORE_NAME)

    public_id = str(resource["public_id"])
    fmt = resource.get("format")
    original = resource.get("original_filename") or resource.get("display_name")
    if original:
        filename = f"{original}.{fmt}" if fmt and not str(original).endswith(f".{fmt}") else str(original)
    else:
        stem = PurePosixPath(public_id).name
        filename = f"{stem}.{fmt}" if fmt else stem

    folder = resource.get("asset_folder") or resource.get("folder")
    if folder is None and "/" in public_id:
        folder = str(PurePosixPath(public_id).parent)

    version = resource.get("version")
    byte_size = resource.get("bytes")
    try:
        version = int(version) if version is not None else None
        byte_size = int(byte_size) if byte_size is not None else None
    except (TypeError, ValueError) as exc:
        raise AssetStoreDataError(
            f"Resource {public_id} has non-numeric version or size", store_name=STORE_NAME
        ) from exc

    tags = resource.get("tags") or []
    if isinstance(tags, str):
        tags = [t for t in tags.split(",") if t]

    return StoreAsset(
        external_id=public_id,
        resource_type=resource.get("resource_type") or "image",
        filename=filename,
        folder=folder or None,
        format=fmt,
        byte_size=byte_size,
        checksum=resource.get("etag"),
        version=version,
        secure_url=resource.get("secure_url"),
        tags=list(tags),
        context=extract_context(resource),
        created_at=_parse_datetime(resource.get("created_at")),
        raw_data=resource,
    )


class CloudinaryClient:
    """Wrapper around the Cloudinary REST API.

    Implements the AssetStoreClient protocol.
    """

    def __init__(
        self,
        cloud_name: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client with credentials.

        Args:
            cloud_name: Cloudinary cloud name (defaults to settings)
            api_key: API key (defaults to settings)
            api_secret: API secret (defaults to settings)
            base_url: API root (defaults to settings)
            timeout: Per-request timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self._cloud_name = cloud_name or settings.CLOUDINARY_CLOUD_NAME
        self._api_key = api_key or settings.CLOUDINARY_API_KEY
        self._api_secret = api_secret or settings.CLOUDINARY_API_SECRET
        self._base_url = (base_url or settings.CLOUDINARY_API_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.ASSET_STORE_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def store_name(self) -> str:
        return STORE_NAME

    def is_configured(self) -> bool:
        """Check if Cloudinary credentials are configured."""
        return bool(self._cloud_name and self._api_key and self._api_secret)

    def _check_credentials(self) -> None:
        if not self.is_configured():
            raise AssetStoreAuthError(
                "Cloudinary credentials not configured. "
                "Run 'python -m scripts.setup_cloudinary' to set them up.",
                store_name=STORE_NAME,
            )

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=f"{self._base_url}/{self._cloud_name}",
            timeout=self._timeout,
            transport=self._transport,
        )

    def _signed(self, params: dict) -> dict:
        signed = {k: v for k, v in params.items() if v not in (None, "")}
        signed["timestamp"] = str(int(time.time()))
        signed["signature"] = sign_params(signed, self._api_secret)
        signed["api_key"] = self._api_key
        return signed

    def _request(self, method: str, path: str, *, external_id: str | None = None, **kwargs) -> dict:
        """Send a request and map transport/status failures to store exceptions."""
        self._check_credentials()
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise AssetStoreAuthError(
                    f"Cloudinary authentication failed (HTTP {status})",
                    store_name=STORE_NAME,
                ) from exc
            if status == 404:
                raise AssetNotFoundError(
                    f"Cloudinary resource not found: {external_id or path}",
                    store_name=STORE_NAME,
                    external_id=external_id,
                ) from exc
            raise AssetStoreAPIError(
                f"Cloudinary API error (HTTP {status})",
                store_name=STORE_NAME,
                status_code=status,
            ) from exc
        except httpx.TransportError as exc:
            raise AssetStoreConnectionError(
                f"Cloudinary connection failed: {exc}",
                store_name=STORE_NAME,
            ) from exc
        except ValueError as exc:
            raise AssetStoreDataError(
                "Cloudinary returned a non-JSON response", store_name=STORE_NAME
            ) from exc

        if not isinstance(payload, dict):
            raise AssetStoreDataError("Cloudinary returned an unexpected payload", store_name=STORE_NAME)
        return payload

    def _basic_auth(self) -> tuple[str, str]:
        return (self._api_key, self._api_secret)

    def create(
        self,
        content: bytes,
        filename: str,
        folder: str | None = None,
        resource_type: str = "auto",
        tags: list[str] | None = None,
        context: dict | None = None,
    ) -> StoreAsset:
        """Upload bytes to Cloudinary.

        Args:
            content: File bytes.
            filename: Original filename, kept as ``original_filename``.
            folder: Destination folder.
            resource_type: ``image``, ``video``, ``raw`` or ``auto``.
            tags: Tags to attach.
            context: Custom context values (the correlation id travels here).

        Returns:
            The stored resource metadata.
        """
        params = self._signed(
            {
                "folder": folder,
                "tags": ",".join(tags) if tags else None,
                "context": _encode_context(context) if context else None,
                "use_filename": "true",
                "unique_filename": "true",
            }
        )
        payload = self._request(
            "POST",
            f"/{resource_type}/upload",
            data=params,
            files={"file": (filename, content)},
        )
        asset = parse_resource(payload)
        logger.info("Cloudinary: uploaded %s (version %s)", asset.external_id, asset.version)
        return asset

    def delete(self, external_id: str, resource_type: str = "image") -> bool:
        """Destroy a resource. ``not found`` is reported as False, not an error."""
        params = self._signed({"public_id": external_id, "invalidate": "true"})
        try:
            payload = self._request(
                "POST",
                f"/{resource_type or 'image'}/destroy",
                data=params,
                external_id=external_id,
            )
        except AssetNotFoundError:
            return False

        result = payload.get("result")
        if result == "ok":
            logger.info("Cloudinary: destroyed %s", external_id)
            return True
        if result == "not found":
            logger.info("Cloudinary: %s already absent", external_id)
            return False
        raise AssetStoreAPIError(
            f"Cloudinary destroy returned unexpected result {result!r}",
            store_name=STORE_NAME,
        )

    def get(self, external_id: str, resource_type: str = "image") -> StoreAsset:
        """Fetch one resource through the admin API."""
        payload = self._request(
            "GET",
            f"/resources/{resource_type or 'image'}/upload/{external_id}",
            auth=self._basic_auth(),
            external_id=external_id,
        )
        return parse_resource(payload)

    def list_page(self, cursor: str | None = None, page_size: int | None = None) -> StorePage:
        """Fetch one page of resources via the search API."""
        body = {
            "expression": "resource_type:image OR resource_type:video OR resource_type:raw",
            "max_results": page_size or settings.ASSET_STORE_PAGE_SIZE,
            "with_field": ["context", "tags"],
        }
        if cursor:
            body["next_cursor"] = cursor
        payload = self._request(
            "POST",
            "/resources/search",
            json=body,
            auth=self._basic_auth(),
        )
        resources = payload.get("resources")
        if not isinstance(resources, list):
            raise AssetStoreDataError("Search response has no resources list", store_name=STORE_NAME)
        assets = [parse_resource(r) for r in resources]
        logger.debug("Cloudinary: listed %d resources (cursor=%s)", len(assets), cursor)
        return StorePage(assets=assets, next_cursor=payload.get("next_cursor") or None)
