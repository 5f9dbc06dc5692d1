"""Typed exception hierarchy for asset store errors.

Lets callers tell apart auth problems, transient network failures,
missing resources, and malformed responses without parsing messages.
"""


class AssetStoreError(Exception):
    """Base exception for all asset store errors.

    Carries the store name so log lines identify which backend failed.
    """

    def __init__(self, message: str, store_name: str = ""):
        self.store_name = store_name
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        return False


class AssetStoreAuthError(AssetStoreError):
    """Credentials missing, expired, or invalid (HTTP 401/403)."""

    pass


class AssetStoreConnectionError(AssetStoreError):
    """Network failures: timeouts, DNS resolution, refused or reset connections.

    Retriable by default.
    """

    def __init__(self, message: str, store_name: str = "", retriable: bool = True):
        self._retriable = retriable
        super().__init__(message, store_name)

    @property
    def retriable(self) -> bool:
        return self._retriable


class AssetStoreAPIError(AssetStoreError):
    """HTTP 4xx/5xx responses from the asset store API."""

    def __init__(
        self,
        message: str,
        store_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, store_name)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class AssetNotFoundError(AssetStoreAPIError):
    """The requested resource does not exist in the store (HTTP 404)."""

    def __init__(self, message: str, store_name: str = "", external_id: str | None = None):
        self.external_id = external_id
        super().__init__(message, store_name, status_code=404)


class AssetStoreDataError(AssetStoreError):
    """Malformed or unparseable response from the asset store."""

    pass
