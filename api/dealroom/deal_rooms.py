"""The published deal room for each project, plus its showcase photo blob."""

import os
import time
from typing import List, Optional

import structlog

from .config import StorageConfig
from .db import JsonFileStore, dump_records, parse_records
from .errors import ConflictError, NotFoundError, StorageError
from .schemas import (
    DealRoom,
    DealRoomCreate,
    DraftData,
    ExternalLink,
    ExternalLinkInput,
    KeyInfoInput,
    KeyInfoItem,
    ShowcasePhoto,
)
from .storage import get_photo_storage
from .utils import generate_id, random_token, utcnow

logger = structlog.get_logger(__name__)


def _key_info_items(items: List[KeyInfoInput]) -> List[KeyInfoItem]:
    return [
        KeyInfoItem(
            id=generate_id("item", with_timestamp=False),
            name=item.name,
            link=item.link,
            order=index if item.order is None else item.order,
        )
        for index, item in enumerate(items)
    ]


def _external_links(items: List[ExternalLinkInput]) -> List[ExternalLink]:
    return [
        ExternalLink(
            id=generate_id("item", with_timestamp=False),
            name=item.name,
            url=item.url,
            order=index if item.order is None else item.order,
        )
        for index, item in enumerate(items)
    ]


def generate_photo_filename(original_name: str) -> str:
    _, extension = os.path.splitext(original_name)
    return f"showcase_{int(time.time() * 1000)}_{random_token()}{extension}"


class DealRoomStore:
    def __init__(self, config: StorageConfig, photos=None):
        self.config = config
        self._rooms = JsonFileStore(config.deal_rooms_path, "deal room")
        self.photos = photos or get_photo_storage(config)

    def read_deal_rooms(self) -> List[DealRoom]:
        return parse_records(DealRoom, self._rooms.read(), "deal room")

    def write_deal_rooms(self, rooms: List[DealRoom]) -> None:
        self._rooms.write(dump_records(rooms))

    def find_by_project_id(self, project_id: str) -> Optional[DealRoom]:
        for room in self.read_deal_rooms():
            if room.project_id == project_id:
                return room
        return None

    def find_by_id(self, room_id: str) -> Optional[DealRoom]:
        for room in self.read_deal_rooms():
            if room.id == room_id:
                return room
        return None

    def create(self, data: DealRoomCreate) -> DealRoom:
        with self._rooms.transaction():
            rooms = self.read_deal_rooms()
            if any(room.project_id == data.project_id for room in rooms):
                raise ConflictError("Deal room already exists for this project")
            now = utcnow()
            room = DealRoom(
                id=generate_id("dr"),
                project_id=data.project_id,
                showcase_photo=data.showcase_photo,
                investment_blurb=data.investment_blurb or "",
                investment_summary=data.investment_summary or "",
                key_info=_key_info_items(data.key_info),
                external_links=_external_links(data.external_links),
                created_at=now,
                updated_at=now,
            )
            rooms.append(room)
            self.write_deal_rooms(rooms)
        logger.info("deal_room_created", project_id=room.project_id, deal_room_id=room.id)
        return room

    def update(self, project_id: str, partial: DraftData) -> DealRoom:
        """Replace every field set in ``partial``; lists get fresh item ids."""
        with self._rooms.transaction():
            rooms = self.read_deal_rooms()
            for index, existing in enumerate(rooms):
                if existing.project_id == project_id:
                    break
            else:
                raise NotFoundError("Deal room not found")

            changes = {"updated_at": utcnow()}
            if partial.is_set("showcase_photo"):
                changes["showcase_photo"] = partial.showcase_photo
            if partial.is_set("investment_blurb"):
                changes["investment_blurb"] = partial.investment_blurb or ""
            if partial.is_set("investment_summary"):
                changes["investment_summary"] = partial.investment_summary or ""
            if partial.is_set("key_info"):
                changes["key_info"] = _key_info_items(partial.key_info or [])
            if partial.is_set("external_links"):
                changes["external_links"] = _external_links(partial.external_links or [])

            room = existing.model_copy(update=changes)
            rooms[index] = room
            self.write_deal_rooms(rooms)
        logger.info(
            "deal_room_updated",
            project_id=project_id,
            fields=sorted(k for k in changes if k != "updated_at"),
        )
        return room

    def delete(self, project_id: str) -> bool:
        with self._rooms.transaction():
            rooms = self.read_deal_rooms()
            remaining = [room for room in rooms if room.project_id != project_id]
            if len(remaining) == len(rooms):
                return False
            removed = next(room for room in rooms if room.project_id == project_id)
            self.write_deal_rooms(remaining)
        if removed.showcase_photo:
            self.delete_showcase_photo_file(removed.showcase_photo.filename)
        logger.info("deal_room_deleted", project_id=project_id)
        return True

    def save_showcase_photo(self, project_id: str, data: bytes, original_name: str, mime_type: str) -> ShowcasePhoto:
        filename = generate_photo_filename(original_name)
        try:
            self.photos.put_bytes(filename, data, content_type=mime_type)
        except Exception as exc:
            logger.error("showcase_photo_save_failed", project_id=project_id, filename=filename, error=str(exc))
            raise StorageError("Failed to save showcase photo") from exc
        logger.info("showcase_photo_saved", project_id=project_id, filename=filename, size=len(data))
        return ShowcasePhoto(
            filename=filename,
            original_name=original_name,
            mime_type=mime_type,
            size=len(data),
            uploaded_at=utcnow(),
        )

    def delete_showcase_photo_file(self, filename: str) -> None:
        # the file may already be gone; the record is what matters
        try:
            self.photos.delete_object(filename)
        except Exception as exc:
            logger.warning("showcase_photo_delete_failed", filename=filename, error=str(exc))

    def get_showcase_photo_path(self, filename: str) -> str:
        return self.photos.locate(filename)

    def read_showcase_photo(self, filename: str) -> bytes:
        return self.photos.get_bytes(filename)
