import io
from pathlib import Path
from typing import Optional

import structlog
from minio import Minio
from minio.error import S3Error

from .config import MINIO_ACCESS_KEY, MINIO_ENDPOINT, MINIO_SECRET_KEY, StorageConfig
from .errors import NotFoundError, StorageError

logger = structlog.get_logger(__name__)


class LocalPhotoStorage:
    """Showcase photos as plain files under ``uploads_dir``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        # keys are bare filenames; never let one escape the upload dir
        return self.root / Path(key).name

    def locate(self, key: str) -> str:
        return str(self._path(key))

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.root.mkdir(parents=True, exist_ok=True)
        self._path(key).write_bytes(data)

    def get_bytes(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError("Showcase photo file not found")
        return path.read_bytes()

    def delete_object(self, key: str):
        self._path(key).unlink()


class MinioPhotoStorage:
    def __init__(self, client: Minio, bucket: str, prefix: str = "deal-room-images"):
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    def _object_name(self, key: str) -> str:
        return f"{self.prefix}/{key}"

    def locate(self, key: str) -> str:
        return f"{self.bucket}/{self._object_name(key)}"

    def ensure_bucket(self):
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.ensure_bucket()
        self.client.put_object(
            self.bucket, self._object_name(key), io.BytesIO(data), length=len(data), content_type=content_type
        )

    def get_bytes(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(self.bucket, self._object_name(key))
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchBucket"):
                raise NotFoundError("Showcase photo file not found") from exc
            raise StorageError("Failed to read showcase photo") from exc
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    def delete_object(self, key: str):
        self.client.remove_object(self.bucket, self._object_name(key))


def make_minio_client(endpoint: str = MINIO_ENDPOINT) -> Minio:
    secure = endpoint.startswith("https://")
    return Minio(
        endpoint.split("://", 1)[-1],
        access_key=MINIO_ACCESS_KEY,
        secret_key=MINIO_SECRET_KEY,
        secure=secure,
    )


def get_photo_storage(config: StorageConfig, client: Optional[Minio] = None):
    if config.photo_backend == "minio":
        return MinioPhotoStorage(client or make_minio_client(), config.minio_bucket)
    if config.photo_backend != "local":
        logger.warning("unknown_photo_backend", backend=config.photo_backend, fallback="local")
    return LocalPhotoStorage(config.uploads_dir)
