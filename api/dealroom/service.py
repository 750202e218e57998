"""Deal room orchestration: published content, drafts, publishing, conflicts.

The service keeps no state of its own. Every call re-reads the stores, so
two service instances over the same ``StorageConfig`` see the same data.
"""

from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from . import draft_model
from .config import StorageConfig
from .deal_rooms import DealRoomStore
from .drafts import DraftRepository, DraftStore
from .errors import ConflictError, DealRoomError, NotFoundError, ValidationError
from .schemas import (
    CompletionStatus,
    ConflictCreate,
    ConflictResolution,
    ConflictResolveResult,
    DealRoom,
    DealRoomCreate,
    DealRoomDraft,
    DealRoomSnapshot,
    DealRoomVersion,
    DraftCreate,
    DraftData,
    DraftUpsert,
    ExternalLinkInput,
    KeyInfoInput,
    PublishResult,
    RecoveredDraft,
    SaveStatus,
    SectionStatus,
    ShowcasePhoto,
)

logger = structlog.get_logger(__name__)

Payload = Union[DraftData, Mapping[str, Any]]


def _require(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value


def _as_payload(data: Optional[Payload]) -> dict:
    if data is None:
        return {}
    if isinstance(data, DraftData):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, Mapping):
        return dict(data)
    raise ValidationError("Draft data must be an object")


def _to_draft_data(payload: Mapping[str, Any], prefix: str) -> DraftData:
    try:
        return DraftData.model_validate(payload)
    except PydanticValidationError as exc:
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        raise ValidationError(f"{prefix}: {', '.join(messages)}", messages) from exc


def _fail_fast(errors: List[str]) -> None:
    if errors:
        raise ValidationError(errors[0], errors)


class DealRoomService:
    def __init__(self, deal_rooms: DealRoomStore, drafts: DraftRepository, max_photo_bytes: Optional[int] = None):
        self.deal_rooms = deal_rooms
        self.drafts = drafts
        self.max_photo_bytes = max_photo_bytes or deal_rooms.config.max_photo_bytes

    # published deal room

    def get_deal_room_by_project_id(self, project_id: str) -> Optional[DealRoom]:
        _require(project_id, "Project ID")
        return self.deal_rooms.find_by_project_id(project_id)

    def create_deal_room(self, data: Union[DealRoomCreate, Mapping[str, Any]]) -> DealRoom:
        if isinstance(data, DealRoomCreate):
            payload = data.model_dump(mode="json", by_alias=True)
        else:
            payload = dict(data)
        result = draft_model.validate_deal_room_fields(payload.get("projectId"), payload)
        if not result.is_valid:
            raise ValidationError(f"Validation failed: {', '.join(result.errors)}", result.errors)
        try:
            create = DealRoomCreate.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(f"Validation failed: {exc.error_count()} invalid field(s)") from exc
        return self.deal_rooms.create(create)

    def get_or_create_deal_room(self, project_id: str) -> DealRoom:
        _require(project_id, "Project ID")
        room = self.deal_rooms.find_by_project_id(project_id)
        if room is not None:
            return room
        try:
            return self.deal_rooms.create(DealRoomCreate(project_id=project_id))
        except ConflictError:
            # created by a concurrent request between the lookup and the create
            return self.deal_rooms.find_by_project_id(project_id)

    def update_deal_room(self, project_id: str, fields: Payload) -> DealRoom:
        _require(project_id, "Project ID")
        payload = _as_payload(fields)
        result = draft_model.validate_deal_room_fields(project_id, payload)
        if not result.is_valid:
            raise ValidationError(f"Validation failed: {', '.join(result.errors)}", result.errors)
        partial = _to_draft_data(payload, "Validation failed")
        self.get_or_create_deal_room(project_id)
        return self.deal_rooms.update(project_id, partial)

    def delete_deal_room(self, project_id: str) -> bool:
        _require(project_id, "Project ID")
        return self.deal_rooms.delete(project_id)

    def update_investment_blurb(self, project_id: str, investment_blurb: Any) -> DealRoom:
        _require(project_id, "Project ID")
        _fail_fast(draft_model.blurb_errors(investment_blurb))
        self.get_or_create_deal_room(project_id)
        return self.deal_rooms.update(project_id, DraftData(investment_blurb=investment_blurb))

    def update_investment_summary(self, project_id: str, investment_summary: Any) -> DealRoom:
        _require(project_id, "Project ID")
        _fail_fast(draft_model.summary_errors(investment_summary))
        self.get_or_create_deal_room(project_id)
        return self.deal_rooms.update(project_id, DraftData(investment_summary=investment_summary))

    def update_key_info(self, project_id: str, key_info: Any) -> DealRoom:
        _require(project_id, "Project ID")
        _fail_fast(draft_model.key_info_errors(key_info))
        items = [KeyInfoInput.model_validate(item) for item in key_info]
        self.get_or_create_deal_room(project_id)
        return self.deal_rooms.update(project_id, DraftData(key_info=items))

    def update_external_links(self, project_id: str, external_links: Any) -> DealRoom:
        _require(project_id, "Project ID")
        _fail_fast(draft_model.external_link_errors(external_links))
        items = [ExternalLinkInput.model_validate(item) for item in external_links]
        self.get_or_create_deal_room(project_id)
        return self.deal_rooms.update(project_id, DraftData(external_links=items))

    def get_deal_room_completion_status(self, project_id: str) -> CompletionStatus:
        room = self.get_deal_room_by_project_id(project_id)
        sections = SectionStatus(
            showcase_photo=bool(room and room.showcase_photo),
            investment_blurb=bool(room and room.investment_blurb.strip()),
            investment_summary=bool(room and room.investment_summary.strip()),
            key_info=bool(room and room.key_info),
            external_links=bool(room and room.external_links),
        )
        flags = sections.model_dump(by_alias=True)
        completed = [name for name, done in flags.items() if done]
        return CompletionStatus(
            completion_percentage=round(len(completed) / len(flags) * 100),
            completed_sections=completed,
            total_sections=len(flags),
            section_status=sections,
        )

    # showcase photo

    def upload_showcase_photo(self, project_id: str, data: bytes, original_name: str, mime_type: str) -> DealRoom:
        _require(project_id, "Project ID")
        if not data:
            raise ValidationError("File is required")
        _require(original_name, "Original filename")
        if not draft_model.is_valid_image_mime_type(mime_type):
            raise ValidationError("Invalid image format. Only JPEG, PNG, and WebP are supported")
        if len(data) > self.max_photo_bytes:
            limit_mb = self.max_photo_bytes // (1024 * 1024)
            raise ValidationError(f"File size too large. Maximum size is {limit_mb}MB")

        room = self.get_or_create_deal_room(project_id)
        previous = room.showcase_photo
        photo = self.deal_rooms.save_showcase_photo(project_id, data, original_name, mime_type)
        room = self.deal_rooms.update(project_id, DraftData(showcase_photo=photo))
        if previous:
            self.deal_rooms.delete_showcase_photo_file(previous.filename)
        return room

    def remove_showcase_photo(self, project_id: str) -> DealRoom:
        _require(project_id, "Project ID")
        room = self.deal_rooms.find_by_project_id(project_id)
        if room is None:
            raise NotFoundError("Deal room not found")
        if room.showcase_photo:
            self.deal_rooms.delete_showcase_photo_file(room.showcase_photo.filename)
        return self.deal_rooms.update(project_id, DraftData(showcase_photo=None))

    def get_showcase_photo_path(self, project_id: str) -> Optional[str]:
        room = self.get_deal_room_by_project_id(project_id)
        if room is None or room.showcase_photo is None:
            return None
        return self.deal_rooms.get_showcase_photo_path(room.showcase_photo.filename)

    get_showcase_photo = get_showcase_photo_path

    def read_showcase_photo(self, project_id: str) -> Optional[Tuple[ShowcasePhoto, bytes]]:
        room = self.get_deal_room_by_project_id(project_id)
        if room is None or room.showcase_photo is None:
            return None
        return room.showcase_photo, self.deal_rooms.read_showcase_photo(room.showcase_photo.filename)

    # drafts

    def get_draft(self, project_id: str, session_id: str) -> Optional[DealRoomDraft]:
        _require(project_id, "Project ID")
        _require(session_id, "Session ID")
        return self.drafts.find_draft_by_project_and_session(project_id, session_id)

    def save_draft(
        self,
        project_id: str,
        session_id: str,
        draft_data: Optional[Payload],
        is_auto_save: bool = True,
        user_id: Optional[str] = None,
        mode: Union[DraftUpsert, str] = DraftUpsert.REPLACE,
    ) -> DealRoomDraft:
        """Store this session's edits; every call bumps the draft version.

        The default ``REPLACE`` mode makes ``draft_data`` the complete set of
        edits. ``MERGE`` layers it over the fields already in the draft.
        """
        payload = _as_payload(draft_data)
        result = draft_model.validate({"projectId": project_id, "sessionId": session_id, "draftData": payload})
        if not result.is_valid:
            raise ValidationError(f"Draft validation failed: {', '.join(result.errors)}", result.errors)
        try:
            mode = DraftUpsert(mode)
        except ValueError as exc:
            raise ValidationError(f"Unknown draft save mode: {mode}") from exc
        data = _to_draft_data(payload, "Draft validation failed")
        room = self.deal_rooms.find_by_project_id(project_id)
        create = DraftCreate(
            project_id=project_id,
            session_id=session_id,
            draft_data=data,
            is_auto_save=is_auto_save,
            user_id=user_id,
            base_version=self.drafts.get_latest_version_number(project_id),
            base_data=room.snapshot() if room else DealRoomSnapshot(),
        )
        return self.drafts.upsert_draft(create, mode)

    def recover_unsaved_changes(self, project_id: str, session_id: str) -> Optional[RecoveredDraft]:
        draft = self.get_draft(project_id, session_id)
        if draft is None or not draft.has_unsaved_changes:
            return None
        return RecoveredDraft(
            draft_data=draft.draft_data,
            version=draft.version,
            is_auto_save=draft.is_auto_save,
            updated_at=draft.updated_at,
        )

    def _server_changes(self, draft: DealRoomDraft, current: DraftData) -> DraftData:
        """What changed in the published room since ``draft`` was started."""
        if draft.base_data is not None:
            return draft_model.changed_fields(draft.base_data.as_draft_data(), current)
        # no room state recorded with the draft; fall back to its base version
        if draft.base_version == 0:
            return draft_model.changed_fields(DealRoomSnapshot().as_draft_data(), current)
        base = self.drafts.get_version_by_number(draft.project_id, draft.base_version)
        if base is None:
            # base snapshot pruned; treat the whole room as changed
            return current
        return draft_model.changed_fields(base.data.as_draft_data(), current)

    def _check_for_conflicts(self, draft: DealRoomDraft, room: DealRoom) -> None:
        latest = self.drafts.get_latest_version_number(draft.project_id)
        if latest <= draft.base_version:
            return
        current = room.as_draft_data()
        server_changes = self._server_changes(draft, current)
        fields = draft_model.detect_conflicts(draft.draft_data, server_changes)
        if not fields:
            return
        conflict = self.drafts.create_conflict(
            ConflictCreate(
                project_id=draft.project_id,
                session_id=draft.session_id,
                conflict_type="concurrent_edit",
                local_version=draft.version,
                server_version=latest,
                local_data=draft.draft_data,
                server_data=current,
                conflict_fields=fields,
            )
        )
        logger.warning(
            "conflict_detected",
            project_id=draft.project_id,
            session_id=draft.session_id,
            conflict_id=conflict.conflict_id,
            fields=fields,
        )
        raise ConflictError(f"Conflict detected: {conflict.conflict_id}", conflict.conflict_id)

    def publish_draft(self, project_id: str, session_id: str, change_description: Optional[str] = None) -> PublishResult:
        """Apply a session's draft to the published room and record a version.

        Fields the draft set replace the published ones; everything else is
        kept. The draft is deleted only after both the room and the version
        have been written, so any failure leaves it in place for a retry.
        """
        draft = self.get_draft(project_id, session_id)
        if draft is None:
            raise NotFoundError("No draft found to publish")

        room = self.get_or_create_deal_room(project_id)
        self._check_for_conflicts(draft, room)
        previous_photo = room.showcase_photo

        try:
            room = self.deal_rooms.update(project_id, draft.draft_data)
            version = self.drafts.create_version(project_id, room.snapshot(), change_description, draft.user_id)
        except DealRoomError as exc:
            logger.error("publish_failed", project_id=project_id, session_id=session_id, error=exc.message)
            raise

        self.drafts.delete_draft(project_id, session_id)
        if previous_photo and (room.showcase_photo is None or room.showcase_photo.filename != previous_photo.filename):
            self.deal_rooms.delete_showcase_photo_file(previous_photo.filename)
        logger.info(
            "draft_published",
            project_id=project_id,
            session_id=session_id,
            draft_version=draft.version,
            version=version.version,
        )
        return PublishResult(deal_room=room, version=version)

    def get_save_status(self, project_id: str, session_id: str) -> SaveStatus:
        _require(project_id, "Project ID")
        _require(session_id, "Session ID")
        try:
            draft = self.drafts.find_draft_by_project_and_session(project_id, session_id)
            conflicts = [
                c for c in self.drafts.get_unresolved_conflicts_by_project(project_id) if c.session_id == session_id
            ]
        except DealRoomError as exc:
            logger.error("save_status_failed", project_id=project_id, session_id=session_id, error=exc.message)
            return SaveStatus(status="error", has_unsaved_changes=True, version=0, error=exc.message)

        if conflicts:
            return SaveStatus(
                status="conflict",
                has_unsaved_changes=True,
                version=draft.version if draft else 0,
                conflict_id=conflicts[0].conflict_id,
            )
        if draft is None:
            return SaveStatus(status="saved", has_unsaved_changes=False, version=0)

        unsaved = draft.has_unsaved_changes
        return SaveStatus(
            status="unsaved" if unsaved else "saved",
            last_saved=draft.updated_at if draft.last_saved_version is not None else None,
            last_auto_save=draft.updated_at if draft.is_auto_save else None,
            has_unsaved_changes=unsaved,
            version=draft.version,
        )

    # history and conflicts

    def get_version_history(self, project_id: str, limit: int = 10) -> List[DealRoomVersion]:
        _require(project_id, "Project ID")
        return self.drafts.get_versions_by_project(project_id, limit)

    def restore_version(self, project_id: str, version_id: str, session_id: str) -> DealRoom:
        _require(project_id, "Project ID")
        _require(version_id, "Version ID")
        _require(session_id, "Session ID")
        version = self.drafts.get_version_by_id(version_id)
        if version is None or version.project_id != project_id:
            raise NotFoundError("Version not found")

        self.get_or_create_deal_room(project_id)
        room = self.deal_rooms.update(project_id, version.data.as_draft_data())
        self.drafts.create_version(
            project_id, room.snapshot(), f"Restored to version {version.version}", version.created_by
        )
        self.drafts.delete_draft(project_id, session_id)
        return room

    def resolve_conflict(
        self, conflict_id: str, resolution: str, custom_data: Optional[Payload] = None
    ) -> ConflictResolveResult:
        _require(conflict_id, "Conflict ID")
        conflict = self.drafts.get_conflict_by_id(conflict_id)
        if conflict is None:
            raise NotFoundError("Conflict not found")
        if conflict.resolved_at is not None:
            raise ConflictError("Conflict already resolved", conflict_id)

        if custom_data is not None:
            payload = _as_payload(custom_data)
            _fail_fast(draft_model.content_errors(payload))
            resolved = _to_draft_data(payload, "Validation failed")
            recorded = "manual"
        elif resolution in draft_model.MERGE_RESOLUTIONS:
            resolved = draft_model.merge_data(conflict.local_data, conflict.server_data, resolution)
            recorded = resolution
        else:
            raise ValidationError(f"Invalid resolution strategy: {resolution}")

        project_id = conflict.project_id
        self.get_or_create_deal_room(project_id)
        room = self.deal_rooms.update(project_id, resolved)
        resolved_conflict = self.drafts.resolve_conflict(conflict_id, recorded, resolved)
        version = self.drafts.create_version(
            project_id, room.snapshot(), f"Conflict resolved using {resolution} strategy"
        )

        draft = self.drafts.find_draft_by_project_and_session(project_id, conflict.session_id)
        if draft is not None:
            if resolution == "use_local" and custom_data is None:
                self.drafts.update_draft(
                    project_id,
                    conflict.session_id,
                    version=draft.version,
                    last_saved_version=draft.version,
                    base_version=version.version,
                    base_data=room.snapshot(),
                )
            else:
                self.drafts.delete_draft(project_id, conflict.session_id)
        return ConflictResolveResult(deal_room=room, conflict=resolved_conflict)

    def get_unresolved_conflicts(self, project_id: str) -> List[ConflictResolution]:
        _require(project_id, "Project ID")
        return self.drafts.get_unresolved_conflicts_by_project(project_id)

    def cleanup_expired_drafts(self) -> int:
        return self.drafts.cleanup_expired_drafts()


def build_service(config: Optional[StorageConfig] = None, photos=None) -> DealRoomService:
    config = config or StorageConfig.from_env()
    drafts = DraftStore(config)
    drafts.ensure_data_files_exist()
    return DealRoomService(DealRoomStore(config, photos=photos), drafts)


@lru_cache
def get_deal_room_service() -> DealRoomService:
    return build_service()
