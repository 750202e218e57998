from typing import Dict

import pytest
from fastapi.testclient import TestClient
from minio.error import S3Error

from dealroom.config import StorageConfig
from dealroom.deal_rooms import DealRoomStore
from dealroom.drafts import DraftStore
from dealroom.main import app
from dealroom.service import DealRoomService, get_deal_room_service
from dealroom.storage import LocalPhotoStorage


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(data_dir=tmp_path / "data", uploads_dir=tmp_path / "uploads" / "deal-room-images")


@pytest.fixture
def draft_store(storage_config) -> DraftStore:
    store = DraftStore(storage_config)
    store.ensure_data_files_exist()
    return store


@pytest.fixture
def photo_storage(storage_config) -> LocalPhotoStorage:
    return LocalPhotoStorage(storage_config.uploads_dir)


@pytest.fixture
def deal_room_store(storage_config, photo_storage) -> DealRoomStore:
    return DealRoomStore(storage_config, photos=photo_storage)


@pytest.fixture
def service(deal_room_store, draft_store) -> DealRoomService:
    return DealRoomService(deal_room_store, draft_store)


@pytest.fixture
def client(service):
    app.dependency_overrides[get_deal_room_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message="missing",
        resource="/deal-room",
        request_id="test-request",
        host_id="test-host",
        response=None,
    )


class FakeObject:
    def __init__(self, data: bytes):
        self._data = data
        self.closed = False

    def read(self) -> bytes:
        return self._data

    def close(self):
        self.closed = True

    def release_conn(self):
        pass


class FakeMinio:
    """Just enough of ``minio.Minio`` for the photo backend."""

    def __init__(self):
        self.buckets = set()
        self.objects: Dict[str, Dict[str, bytes]] = {}
        self.content_types: Dict[str, str] = {}

    def bucket_exists(self, bucket: str) -> bool:
        return bucket in self.buckets

    def make_bucket(self, bucket: str):
        self.buckets.add(bucket)
        self.objects.setdefault(bucket, {})

    def put_object(self, bucket, name, stream, length, content_type="application/octet-stream"):
        if bucket not in self.buckets:
            raise s3_error("NoSuchBucket")
        self.objects[bucket][name] = stream.read(length)
        self.content_types[name] = content_type

    def get_object(self, bucket, name):
        if name not in self.objects.get(bucket, {}):
            raise s3_error("NoSuchKey")
        return FakeObject(self.objects[bucket][name])

    def remove_object(self, bucket, name):
        self.objects.get(bucket, {}).pop(name, None)


@pytest.fixture
def fake_minio() -> FakeMinio:
    return FakeMinio()
