"""Cloudinary and webhook secrets stored in the OS keychain.

:class:`config.KeychainSettingsSource` reads these entries when the
environment leaves a secret unset, and ``scripts.setup_cloudinary`` writes
them. Any keyring problem (not installed, locked, no backend) reads as
"nothing stored" so env-provided secrets keep working.
"""

import logging
from types import ModuleType

logger = logging.getLogger(__name__)

SERVICE_NAME = "media-sync"

CLOUDINARY_KEYS = ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")
CREDENTIAL_KEYS: frozenset[str] = frozenset((*CLOUDINARY_KEYS, "WEBHOOK_SIGNING_SECRET"))


def _backend() -> ModuleType | None:
    # Imported per call so tests can swap the module in sys.modules
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def _accepts(key: str, action: str) -> bool:
    if key in CREDENTIAL_KEYS:
        return True
    logger.warning("Refusing to %s %s: not a media-sync secret", action, key)
    return False


def get_credential(key: str) -> str | None:
    """Keychain value for ``key``, or None when absent or unreadable."""
    backend = _backend()
    if backend is None:
        return None
    try:
        value = backend.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain read of %s failed", key, exc_info=True)
        return None
    return value or None


def set_credential(key: str, value: str) -> bool:
    """Write one secret. Returns False if it was refused or not stored."""
    if not _accepts(key, "store"):
        return False
    value = (value or "").strip()
    if not value:
        logger.warning("Refusing to store an empty %s", key)
        return False

    backend = _backend()
    if backend is None:
        logger.warning("keyring is not installed; %s was not stored", key)
        return False
    try:
        backend.set_password(SERVICE_NAME, key, value)
    except Exception:
        logger.warning("Keychain write of %s failed", key, exc_info=True)
        return False
    logger.info("Stored %s under keychain service %s", key, SERVICE_NAME)
    return True


def delete_credential(key: str) -> bool:
    """Remove one secret. Returns False if nothing was removed."""
    if not _accepts(key, "delete"):
        return False
    backend = _backend()
    if backend is None:
        return False
    try:
        backend.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain delete of %s failed", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain service %s", key, SERVICE_NAME)
    return True
