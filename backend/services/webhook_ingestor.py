"""Webhook ingestor - verifies and applies asset store notifications.

Deliveries are authenticated against the shared secret, parsed, and applied
to the catalog with version-guarded merges so redelivered or reordered
notifications never move a row backwards. Each call commits or rolls back
as a unit.
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.cloudinary_client import extract_context, parse_resource
from integrations.exceptions import AssetStoreDataError
from models import MediaAsset, utc_now
from services.error_classification import ErrorKind
from services.media_asset_service import MediaAssetService, apply_remote_changes, store_changes
from services.realtime_broadcaster import set_change_origin
from services.sync_operation_service import SyncOperationService

logger = logging.getLogger(__name__)

UPDATE_TYPES = frozenset({"update", "resource_context_changed", "resource_tags_changed", "rename"})


@dataclass
class WebhookResult:
    """Typed outcome of one delivery."""

    outcome: str  # "ack" | "reject" | "retry"
    error_kind: ErrorKind | None = None
    message: str | None = None
    notification_type: str | None = None
    asset_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == "ack"


def compute_signature(body: bytes, timestamp: str, secret: str, algorithm: str = "sha1") -> str:
    """Signature of ``body + timestamp`` under ``secret``.

    ``sha1`` is the Cloudinary scheme (the secret is appended before
    hashing); ``hmac-sha256`` keys an HMAC with the secret.
    """
    message = body + timestamp.encode("utf-8")
    if algorithm == "hmac-sha256":
        return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return hashlib.sha1(message + secret.encode("utf-8")).hexdigest()


def _reject(message: str, notification_type: str | None = None) -> WebhookResult:
    return WebhookResult(
        outcome="reject",
        error_kind=ErrorKind.PERMANENT,
        message=message,
        notification_type=notification_type,
    )


class WebhookIngestor:
    """Authenticate and apply asset store webhooks."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "sha1",
        max_skew_seconds: int = 7200,
        media_service: Optional[MediaAssetService] = None,
        operations: Optional[SyncOperationService] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._max_skew = max_skew_seconds
        self._media = media_service or MediaAssetService()
        self._operations = operations or SyncOperationService()
        self._clock = clock

    def verify(self, body: bytes, signature: str | None, timestamp: str | None) -> str | None:
        """Return None if the delivery is authentic, else the rejection reason."""
        if not signature or not timestamp:
            return "missing signature or timestamp"
        try:
            sent_at = int(timestamp)
        except ValueError:
            return "timestamp is not an integer"
        if abs(self._clock() - sent_at) > self._max_skew:
            return "timestamp outside allowed window"

        expected = compute_signature(body, timestamp, self._secret, self._algorithm)
        if not hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8")):
            return "signature mismatch"
        return None

    def handle(
        self,
        db: Session,
        body: bytes,
        signature: str | None,
        timestamp: str | None,
    ) -> WebhookResult:
        """Verify, parse and apply one delivery.

        Returns:
            ``ack`` when applied (or harmlessly ignored), ``reject`` for
            authentication or payload problems, ``retry`` when the catalog
            could not be written and the provider should redeliver.
        """
        if not self._secret:
            logger.error("Webhook received but WEBHOOK_SIGNING_SECRET is not configured")
            return WebhookResult(outcome="retry", error_kind=ErrorKind.TRANSIENT, message="webhook secret not configured")

        reason = self.verify(body, signature, timestamp)
        if reason:
            logger.warning("Rejected webhook: %s", reason)
            return _reject(reason)

        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _reject("body is not valid JSON")
        if not isinstance(payload, dict) or not payload.get("notification_type"):
            return _reject("payload has no notification_type")

        notification_type = str(payload["notification_type"])
        set_change_origin(db, "provider")
        try:
            asset_ids, audited = self._apply(db, notification_type, payload)
            if not audited:
                self._operations.record(
                    db,
                    "webhook",
                    source="webhook",
                    operation_data={
                        "notification_type": notification_type,
                        "asset_ids": asset_ids,
                        "public_id": payload.get("public_id"),
                    },
                )
            db.commit()
        except (AssetStoreDataError, ValueError, TypeError, KeyError) as exc:
            db.rollback()
            logger.warning("Rejected %s webhook with malformed payload: %s", notification_type, exc)
            return _reject(f"malformed {notification_type} payload", notification_type)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Catalog write failed for %s webhook; asking for redelivery", notification_type)
            return WebhookResult(
                outcome="retry",
                error_kind=ErrorKind.TRANSIENT,
                message="catalog unavailable",
                notification_type=notification_type,
            )

        return WebhookResult(outcome="ack", notification_type=notification_type, asset_ids=asset_ids)

    def _apply(self, db: Session, notification_type: str, payload: dict) -> tuple[list[str], bool]:
        """Apply the notification. Returns (touched asset ids, audit row written)."""
        if notification_type == "upload":
            return self._apply_upload(db, payload), False
        if notification_type == "delete":
            return self._apply_delete(db, payload)
        if notification_type == "restore":
            return self._apply_restore(db, payload), False
        if notification_type == "rename":
            return self._apply_rename(db, payload), False
        if notification_type in UPDATE_TYPES:
            return self._apply_update(db, payload), False
        logger.info("Ignoring %s webhook", notification_type)
        return [], False

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------

    def _correlated_row(self, db: Session, payload: dict) -> Optional[MediaAsset]:
        correlation_id = extract_context(payload).get("correlation_id") or payload.get("correlation_id")
        if correlation_id:
            row = self._media.get_by_correlation_id(db, str(correlation_id))
            if row is not None and row.deleted_at is None:
                return row
        return None

    def _filename_match(self, db: Session, filename: str, folder: str | None) -> Optional[MediaAsset]:
        candidates = (
            db.query(MediaAsset)
            .filter(
                MediaAsset.external_id.is_(None),
                MediaAsset.deleted_at.is_(None),
                MediaAsset.confirmation_state == "pending",
                MediaAsset.filename == filename,
                MediaAsset.folder.is_(None) if folder is None else MediaAsset.folder == folder,
            )
            .limit(2)
            .all()
        )
        return candidates[0] if len(candidates) == 1 else None

    def _apply_upload(self, db: Session, payload: dict) -> list[str]:
        store_asset = parse_resource(payload)
        existing = self._media.get_by_external_id(db, store_asset.external_id)
        correlated = self._correlated_row(db, payload)

        if existing is not None:
            if existing.deleted_at is not None:
                logger.info("Upload webhook for tombstoned %s ignored", store_asset.external_id)
                return [existing.id]
            result = apply_remote_changes(existing, store_changes(store_asset), store_asset.version)
            if result == "stale":
                logger.info("Stale upload webhook for %s ignored", store_asset.external_id)
            elif existing.confirmation_state != "confirmed" or existing.sync_status != "synced":
                self._media.mark_synced(existing, store_asset)
            if correlated is not None and correlated.id != existing.id:
                correlated.confirmation_state = "rolled_back"
                correlated.sync_status = "error"
                correlated.sync_error_message = f"duplicate of asset {existing.id}"
                self._media.soft_delete(correlated)
            db.flush()
            return [existing.id]

        target = correlated or self._filename_match(db, store_asset.filename, store_asset.folder)
        if target is not None and target.external_id:
            # Already bound to another upload; mirror this resource separately
            logger.warning(
                "Upload webhook for %s correlates to asset %s already bound to %s; importing as new row",
                store_asset.external_id, target.id, target.external_id,
            )
            target = None
        if target is not None:
            self._media.mark_synced(target, store_asset)
            db.flush()
            logger.info("Upload webhook confirmed asset %s as %s", target.id, store_asset.external_id)
            return [target.id]

        asset = self._media.insert_from_store(db, store_asset)
        return [asset.id]

    # ------------------------------------------------------------------
    # delete / restore
    # ------------------------------------------------------------------

    @staticmethod
    def _resource_ids(payload: dict, key: str = "public_id") -> list[str]:
        resources = payload.get("resources")
        if isinstance(resources, list) and resources:
            ids = [str(r[key]) for r in resources if isinstance(r, dict) and r.get(key)]
        elif payload.get(key):
            ids = [str(payload[key])]
        else:
            ids = []
        if not ids:
            raise ValueError(f"no {key} in payload")
        return ids

    def _apply_delete(self, db: Session, payload: dict) -> tuple[list[str], bool]:
        external_ids = self._resource_ids(payload)
        touched = []
        for external_id in external_ids:
            asset = self._media.get_by_external_id(db, external_id)
            if asset is not None and self._media.soft_delete(asset):
                touched.append(asset.id)
        db.flush()

        if not touched:
            self._operations.record(
                db,
                "delete",
                source="webhook",
                operation_data={"external_ids": external_ids, "matched": 0},
            )
            logger.info("Delete webhook for unknown %s recorded", external_ids)
            return [], True
        logger.info("Delete webhook soft-deleted %d asset(s)", len(touched))
        return touched, False

    def _apply_restore(self, db: Session, payload: dict) -> list[str]:
        touched = []
        for external_id in self._resource_ids(payload):
            asset = self._media.get_by_external_id(db, external_id)
            if asset is not None and asset.deleted_at is not None:
                asset.deleted_at = None
                asset.sync_status = "synced"
                asset.last_synced_at = utc_now()
                touched.append(asset.id)
        db.flush()
        return touched

    # ------------------------------------------------------------------
    # update / rename
    # ------------------------------------------------------------------

    @staticmethod
    def _metadata_changes(asset: MediaAsset, resource: dict) -> dict:
        changes = {}
        if isinstance(resource.get("tags"), list):
            changes["tags"] = [str(t) for t in resource["tags"]]
        elif "added" in resource or "removed" in resource:
            tags = list(asset.tags or [])
            for tag in resource.get("added") or []:
                if tag not in tags:
                    tags.append(tag)
            removed = set(resource.get("removed") or [])
            changes["tags"] = [t for t in tags if t not in removed]
        for source_key, field_name in (
            ("bytes", "byte_size"),
            ("etag", "checksum"),
            ("secure_url", "secure_url"),
            ("format", "format"),
        ):
            if resource.get(source_key) is not None:
                changes[field_name] = resource[source_key]
        return changes

    def _apply_update(self, db: Session, payload: dict) -> list[str]:
        resources = payload.get("resources")
        if not isinstance(resources, list) or not resources:
            resources = [payload]

        touched = []
        for resource in resources:
            external_id = resource.get("public_id") if isinstance(resource, dict) else None
            if not external_id:
                raise ValueError("update resource has no public_id")
            asset = self._media.get_by_external_id(db, str(external_id))
            if asset is None or asset.deleted_at is not None:
                continue
            version = resource.get("version")
            version = int(version) if version is not None else None
            result = apply_remote_changes(asset, self._metadata_changes(asset, resource), version)
            if result == "applied":
                touched.append(asset.id)
        db.flush()
        return touched

    def _apply_rename(self, db: Session, payload: dict) -> list[str]:
        from_id = payload.get("from_public_id")
        to_id = payload.get("to_public_id")
        if not from_id or not to_id:
            raise ValueError("rename needs from_public_id and to_public_id")
        asset = self._media.get_by_external_id(db, str(from_id))
        if asset is None or asset.deleted_at is not None:
            return []
        if self._media.get_by_external_id(db, str(to_id)) is not None:
            logger.warning("Rename of %s to existing %s ignored", from_id, to_id)
            return []
        asset.external_id = str(to_id)
        if payload.get("secure_url"):
            asset.secure_url = payload["secure_url"]
        db.flush()
        return [asset.id]
