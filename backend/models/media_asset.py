"""MediaAsset model - catalog mirror of one resource in the asset store."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, JSON, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class MediaAsset(Base):
    """A catalog row mirroring one asset store resource.

    ``external_id`` stays null until the store confirms the upload. Rows are
    soft-deleted by setting ``deleted_at`` and are never removed by the engine.
    """

    __tablename__ = "media_assets"
    __table_args__ = (
        CheckConstraint(
            "sync_status != 'synced' OR external_id IS NOT NULL",
            name="ck_media_assets_synced_has_external_id",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    external_id = Column(String, unique=True, index=True, nullable=True)  # Store public id
    correlation_id = Column(String, unique=True, index=True, nullable=True)  # Upload temp id
    filename = Column(String, nullable=False)
    resource_type = Column(String, nullable=False, default="image")  # "image" | "video" | "raw"
    mime_type = Column(String, nullable=True)
    format = Column(String, nullable=True)
    folder = Column(String, nullable=True)
    byte_size = Column(Integer, nullable=True)
    checksum = Column(String, nullable=True)  # Store etag
    version = Column(Integer, nullable=True)  # Store version, monotonic
    secure_url = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)  # list[str]

    sync_status = Column(String, nullable=False, default="pending")  # "pending" | "synced" | "error"
    confirmation_state = Column(
        String, nullable=False, default="pending"
    )  # "pending" | "confirmed" | "rolled_back"
    sync_error_message = Column(Text, nullable=True)
    sync_retry_count = Column(Integer, nullable=False, default=0)
    last_synced_at = Column(DateTime, nullable=True)

    deleted_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
