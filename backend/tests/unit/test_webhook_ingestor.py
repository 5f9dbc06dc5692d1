"""Tests for WebhookIngestor: authentication and catalog application."""

import copy
import json
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from models import MediaAsset, SyncOperation, utc_now
from services.error_classification import ErrorKind
from services.webhook_ingestor import WebhookIngestor, compute_signature
from tests.fixtures import make_asset
from tests.fixtures.mocks import SAMPLE_DELETE_NOTIFICATION, SAMPLE_UPLOAD_NOTIFICATION

SECRET = "s3cret"
NOW = 1719304900
TIMESTAMP = str(NOW - 20)


@pytest.fixture
def ingestor():
    return WebhookIngestor(secret=SECRET, clock=lambda: NOW)


def deliver(ingestor, db, payload, secret=SECRET, timestamp=TIMESTAMP):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    signature = compute_signature(body, timestamp, secret)
    return ingestor.handle(db, body, signature, timestamp)


def upload_payload(**overrides):
    payload = copy.deepcopy(SAMPLE_UPLOAD_NOTIFICATION)
    payload.update(overrides)
    return payload


class TestVerify:
    def test_valid_signature(self, ingestor):
        body = b'{"notification_type": "upload"}'
        assert ingestor.verify(body, compute_signature(body, TIMESTAMP, SECRET), TIMESTAMP) is None

    def test_signature_is_case_insensitive(self, ingestor):
        body = b"{}"
        signature = compute_signature(body, TIMESTAMP, SECRET).upper()
        assert ingestor.verify(body, signature, TIMESTAMP) is None

    def test_missing_headers(self, ingestor):
        assert ingestor.verify(b"{}", None, TIMESTAMP) == "missing signature or timestamp"
        assert ingestor.verify(b"{}", "abc", None) == "missing signature or timestamp"

    def test_non_integer_timestamp(self, ingestor):
        assert ingestor.verify(b"{}", "abc", "yesterday") == "timestamp is not an integer"

    def test_stale_timestamp(self, ingestor):
        old = str(NOW - 7201)
        body = b"{}"
        reason = ingestor.verify(body, compute_signature(body, old, SECRET), old)
        assert reason == "timestamp outside allowed window"

    def test_tampered_body(self, ingestor):
        signature = compute_signature(b"{}", TIMESTAMP, SECRET)
        assert ingestor.verify(b'{"x": 1}', signature, TIMESTAMP) == "signature mismatch"

    def test_wrong_secret(self, ingestor):
        signature = compute_signature(b"{}", TIMESTAMP, "other")
        assert ingestor.verify(b"{}", signature, TIMESTAMP) == "signature mismatch"

    def test_hmac_sha256_scheme(self):
        ingestor = WebhookIngestor(secret=SECRET, algorithm="hmac-sha256", clock=lambda: NOW)
        body = b"{}"
        sha1_signature = compute_signature(body, TIMESTAMP, SECRET)
        hmac_signature = compute_signature(body, TIMESTAMP, SECRET, "hmac-sha256")
        assert hmac_signature != sha1_signature
        assert ingestor.verify(body, hmac_signature, TIMESTAMP) is None
        assert ingestor.verify(body, sha1_signature, TIMESTAMP) == "signature mismatch"


class TestRejections:
    def test_missing_secret_asks_for_redelivery(self, db):
        result = WebhookIngestor(secret="", clock=lambda: NOW).handle(db, b"{}", "x", TIMESTAMP)
        assert result.outcome == "retry"
        assert result.error_kind == ErrorKind.TRANSIENT

    def test_bad_signature_changes_nothing(self, db, ingestor, pending_asset):
        body = json.dumps(upload_payload()).encode()
        result = ingestor.handle(db, body, "0" * 40, TIMESTAMP)
        assert result.outcome == "reject"
        assert result.error_kind == ErrorKind.PERMANENT
        db.refresh(pending_asset)
        assert pending_asset.sync_status == "pending"
        assert db.query(SyncOperation).count() == 0

    def test_invalid_json(self, db, ingestor):
        result = deliver(ingestor, db, b"not json")
        assert result.outcome == "reject"
        assert "JSON" in result.message

    def test_missing_notification_type(self, db, ingestor):
        result = deliver(ingestor, db, {"public_id": "media/a"})
        assert result.outcome == "reject"

    def test_upload_without_public_id(self, db, ingestor):
        result = deliver(ingestor, db, {"notification_type": "upload", "version": 1})
        assert result.outcome == "reject"
        assert result.notification_type == "upload"
        assert db.query(MediaAsset).count() == 0

    def test_catalog_failure_asks_for_redelivery(self, db, ingestor):
        error = OperationalError("UPDATE", {}, Exception("database is locked"))
        with patch.object(ingestor, "_apply", side_effect=error):
            result = deliver(ingestor, db, upload_payload())
        assert result.outcome == "retry"
        assert result.error_kind == ErrorKind.TRANSIENT
        assert db.query(SyncOperation).count() == 0


class TestUpload:
    def test_confirms_correlated_pending_row(self, db, ingestor, pending_asset):
        result = deliver(ingestor, db, upload_payload())

        assert result.ok
        assert result.asset_ids == [pending_asset.id]
        db.refresh(pending_asset)
        assert pending_asset.external_id == "media/sunset_x8k2p"
        assert pending_asset.sync_status == "synced"
        assert pending_asset.confirmation_state == "confirmed"
        assert pending_asset.version == 1719304854
        assert db.info["change_origin"] == "provider"

    def test_redelivery_is_idempotent(self, db, ingestor, pending_asset):
        deliver(ingestor, db, upload_payload())
        db.refresh(pending_asset)
        first_updated_at = pending_asset.updated_at

        result = deliver(ingestor, db, upload_payload())

        assert result.asset_ids == [pending_asset.id]
        assert db.query(MediaAsset).count() == 1
        db.refresh(pending_asset)
        assert pending_asset.updated_at == first_updated_at
        assert db.query(SyncOperation).filter_by(operation_type="webhook").count() == 2

    def test_filename_fallback_without_correlation(self, db, ingestor, pending_asset):
        payload = upload_payload()
        del payload["context"]
        result = deliver(ingestor, db, payload)
        assert result.asset_ids == [pending_asset.id]

    def test_ambiguous_filename_inserts_new_row(self, db, ingestor, pending_asset):
        make_asset(
            db, external_id=None, correlation_id="temp_other", filename="sunset.jpg",
            sync_status="pending", confirmation_state="pending",
        )
        payload = upload_payload()
        del payload["context"]
        result = deliver(ingestor, db, payload)
        assert result.asset_ids != [pending_asset.id]
        assert db.query(MediaAsset).count() == 3

    def test_unknown_resource_is_inserted(self, db, ingestor):
        result = deliver(ingestor, db, upload_payload(context={}))
        row = db.get(MediaAsset, result.asset_ids[0])
        assert row.external_id == "media/sunset_x8k2p"
        assert row.sync_status == "synced"
        assert row.filename == "sunset.jpg"

    def test_tombstoned_resource_is_not_resurrected(self, db, ingestor):
        tomb = make_asset(db, external_id="media/sunset_x8k2p", deleted_at=utc_now())
        result = deliver(ingestor, db, upload_payload(context={}))
        assert result.asset_ids == [tomb.id]
        assert db.query(MediaAsset).count() == 1
        db.refresh(tomb)
        assert tomb.deleted_at is not None

    def test_stale_version_is_ignored(self, db, ingestor):
        row = make_asset(db, external_id="media/sunset_x8k2p", version=1719309999, byte_size=1)
        deliver(ingestor, db, upload_payload(context={}))
        db.refresh(row)
        assert row.version == 1719309999
        assert row.byte_size == 1

    def test_correlated_duplicate_is_rolled_back(self, db, ingestor, pending_asset):
        owner = make_asset(db, external_id="media/sunset_x8k2p", version=1719304854)
        result = deliver(ingestor, db, upload_payload())
        assert result.asset_ids == [owner.id]
        db.refresh(pending_asset)
        assert pending_asset.confirmation_state == "rolled_back"
        assert pending_asset.deleted_at is not None

    def test_correlated_upload_never_rebinds_a_bound_row(self, db, ingestor, pending_asset):
        external = upload_payload(public_id="media/sunset_external")
        del external["context"]
        deliver(ingestor, db, external)
        db.refresh(pending_asset)
        assert pending_asset.external_id == "media/sunset_external"

        result = deliver(ingestor, db, upload_payload())

        assert result.ok
        assert result.asset_ids != [pending_asset.id]
        db.refresh(pending_asset)
        assert pending_asset.external_id == "media/sunset_external"
        ours = db.query(MediaAsset).filter_by(external_id="media/sunset_x8k2p").one()
        assert ours.sync_status == "synced"


class TestDeleteAndRestore:
    def test_delete_soft_deletes(self, db, ingestor):
        row = make_asset(db, external_id="media/sunset_x8k2p")
        result = deliver(ingestor, db, SAMPLE_DELETE_NOTIFICATION)
        assert result.asset_ids == [row.id]
        db.refresh(row)
        assert row.deleted_at is not None

    def test_delete_of_unknown_resource_is_audited(self, db, ingestor):
        result = deliver(ingestor, db, SAMPLE_DELETE_NOTIFICATION)
        assert result.ok
        assert result.asset_ids == []
        op = db.query(SyncOperation).one()
        assert op.operation_type == "delete"
        assert op.operation_data["external_ids"] == ["media/sunset_x8k2p"]

    def test_delete_twice(self, db, ingestor):
        row = make_asset(db, external_id="media/sunset_x8k2p")
        deliver(ingestor, db, SAMPLE_DELETE_NOTIFICATION)
        db.refresh(row)
        first = row.deleted_at
        deliver(ingestor, db, SAMPLE_DELETE_NOTIFICATION)
        db.refresh(row)
        assert row.deleted_at == first

    def test_restore(self, db, ingestor):
        row = make_asset(db, external_id="media/sunset_x8k2p", deleted_at=utc_now())
        result = deliver(
            ingestor, db, {"notification_type": "restore", "resources": [{"public_id": "media/sunset_x8k2p"}]}
        )
        assert result.asset_ids == [row.id]
        db.refresh(row)
        assert row.deleted_at is None
        assert row.sync_status == "synced"


class TestUpdateAndRename:
    def test_tag_change(self, db, ingestor):
        row = make_asset(db, external_id="media/a", tags=["old"])
        deliver(
            ingestor, db,
            {"notification_type": "resource_tags_changed",
             "resources": [{"public_id": "media/a", "added": ["new"], "removed": ["old"]}]},
        )
        db.refresh(row)
        assert row.tags == ["new"]

    def test_older_update_is_ignored(self, db, ingestor):
        row = make_asset(db, external_id="media/a", version=10, byte_size=5)
        deliver(ingestor, db, {"notification_type": "update", "public_id": "media/a", "version": 9, "bytes": 1})
        db.refresh(row)
        assert row.byte_size == 5

    def test_newer_update_applies(self, db, ingestor):
        row = make_asset(db, external_id="media/a", version=10, byte_size=5)
        result = deliver(
            ingestor, db, {"notification_type": "update", "public_id": "media/a", "version": 11, "bytes": 7}
        )
        assert result.asset_ids == [row.id]
        db.refresh(row)
        assert (row.version, row.byte_size) == (11, 7)

    def test_rename(self, db, ingestor):
        row = make_asset(db, external_id="media/a")
        deliver(
            ingestor, db,
            {"notification_type": "rename", "from_public_id": "media/a", "to_public_id": "media/b"},
        )
        db.refresh(row)
        assert row.external_id == "media/b"

    def test_rename_without_ids_is_rejected(self, db, ingestor):
        result = deliver(ingestor, db, {"notification_type": "rename", "from_public_id": "media/a"})
        assert result.outcome == "reject"

    def test_unhandled_type_is_acknowledged(self, db, ingestor):
        result = deliver(ingestor, db, {"notification_type": "moderation", "public_id": "media/a"})
        assert result.ok
        assert result.asset_ids == []


def catalog_state(db):
    db.expire_all()
    rows = db.query(MediaAsset).order_by(MediaAsset.id).all()
    return [
        (r.id, r.external_id, r.sync_status, r.confirmation_state, r.byte_size, r.version,
         tuple(r.tags or []), r.deleted_at, r.updated_at)
        for r in rows
    ]


@pytest.mark.parametrize(
    "payload",
    [
        SAMPLE_UPLOAD_NOTIFICATION,
        {"notification_type": "update", "public_id": "media/sunset_x8k2p", "version": 1719304999, "bytes": 9},
        {"notification_type": "resource_tags_changed",
         "resources": [{"public_id": "media/sunset_x8k2p", "added": ["beach"]}]},
        SAMPLE_DELETE_NOTIFICATION,
    ],
    ids=["upload", "update", "tags", "delete"],
)
def test_applying_twice_matches_applying_once(db, ingestor, pending_asset, payload):
    make_asset(db, external_id="media/sunset_x8k2p", filename="other.jpg", version=1719304854)

    first = deliver(ingestor, db, payload)
    once = catalog_state(db)
    second = deliver(ingestor, db, payload)

    assert first.ok and second.ok
    assert catalog_state(db) == once
