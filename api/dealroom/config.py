import os
from pathlib import Path

from pydantic import BaseModel

DATA_DIR = os.getenv("DEALROOM_DATA_DIR", "data")
UPLOADS_DIR = os.getenv("DEALROOM_UPLOADS_DIR", os.path.join("uploads", "deal-room-images"))
DRAFT_TTL_HOURS = int(os.getenv("DRAFT_TTL_HOURS", "24"))
MAX_VERSIONS_PER_PROJECT = int(os.getenv("MAX_VERSIONS_PER_PROJECT", "10"))
MAX_PHOTO_BYTES = int(os.getenv("MAX_PHOTO_BYTES", str(10 * 1024 * 1024)))
PHOTO_BACKEND = os.getenv("PHOTO_BACKEND", "local")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "deal-room")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


class StorageConfig(BaseModel):
    """Where and how the flat-file stores keep their data."""

    data_dir: Path
    uploads_dir: Path
    draft_ttl_hours: int = 24
    max_versions_per_project: int = 10
    max_photo_bytes: int = 10 * 1024 * 1024
    photo_backend: str = "local"
    minio_bucket: str = "deal-room"

    @property
    def deal_rooms_path(self) -> Path:
        return self.data_dir / "deal-rooms.json"

    @property
    def drafts_path(self) -> Path:
        return self.data_dir / "deal-room-drafts.json"

    @property
    def versions_path(self) -> Path:
        return self.data_dir / "deal-room-versions.json"

    @property
    def conflicts_path(self) -> Path:
        return self.data_dir / "deal-room-conflicts.json"

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            data_dir=Path(DATA_DIR),
            uploads_dir=Path(UPLOADS_DIR),
            draft_ttl_hours=DRAFT_TTL_HOURS,
            max_versions_per_project=MAX_VERSIONS_PER_PROJECT,
            max_photo_bytes=MAX_PHOTO_BYTES,
            photo_backend=PHOTO_BACKEND,
            minio_bucket=MINIO_BUCKET,
        )
