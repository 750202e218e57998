"""Storage for deal room drafts, published versions and conflict records."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Tuple

import structlog

from .config import StorageConfig
from .db import JsonFileStore, dump_records, parse_records
from .draft_model import generate_conflict_id, generate_draft_id
from .errors import NotFoundError
from .schemas import (
    ConflictCreate,
    ConflictResolution,
    DealRoomDraft,
    DealRoomSnapshot,
    DealRoomVersion,
    DraftCreate,
    DraftData,
    DraftUpsert,
    Resolution,
)
from .utils import generate_id, utcnow

logger = structlog.get_logger(__name__)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class DraftRepository(Protocol):
    """What the deal room service needs from a draft/version/conflict store."""

    def find_draft_by_project_and_session(self, project_id: str, session_id: str) -> Optional[DealRoomDraft]: ...

    def upsert_draft(self, data: DraftCreate, mode: DraftUpsert = DraftUpsert.REPLACE) -> DealRoomDraft: ...

    def update_draft(self, project_id: str, session_id: str, **changes) -> DealRoomDraft: ...

    def delete_draft(self, project_id: str, session_id: str) -> bool: ...

    def cleanup_expired_drafts(self) -> int: ...

    def create_version(
        self,
        project_id: str,
        data: DealRoomSnapshot,
        change_description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DealRoomVersion: ...

    def get_versions_by_project(self, project_id: str, limit: int = 10) -> List[DealRoomVersion]: ...

    def get_version_by_id(self, version_id: str) -> Optional[DealRoomVersion]: ...

    def get_version_by_number(self, project_id: str, number: int) -> Optional[DealRoomVersion]: ...

    def get_latest_version_number(self, project_id: str) -> int: ...

    def create_conflict(self, data: ConflictCreate) -> ConflictResolution: ...

    def resolve_conflict(
        self, conflict_id: str, resolution: Resolution, resolved_data: Optional[DraftData] = None
    ) -> ConflictResolution: ...

    def get_unresolved_conflicts_by_project(self, project_id: str) -> List[ConflictResolution]: ...

    def get_conflict_by_id(self, conflict_id: str) -> Optional[ConflictResolution]: ...


class DraftStore:
    def __init__(self, config: StorageConfig):
        self.config = config
        self._drafts = JsonFileStore(config.drafts_path, "draft")
        self._versions = JsonFileStore(config.versions_path, "version")
        self._conflicts = JsonFileStore(config.conflicts_path, "conflict")

    def ensure_data_files_exist(self) -> None:
        for store in (self._drafts, self._versions, self._conflicts):
            store.ensure_exists()

    def _expiry_from(self, now: datetime) -> datetime:
        return now + timedelta(hours=self.config.draft_ttl_hours)

    # drafts

    def _purge_expired(self) -> Tuple[List[DealRoomDraft], int]:
        with self._drafts.transaction():
            drafts = parse_records(DealRoomDraft, self._drafts.read(), "draft")
            now = utcnow()
            valid = [draft for draft in drafts if _aware(draft.expires_at) > now]
            removed = len(drafts) - len(valid)
            if removed:
                self.write_drafts(valid)
                logger.info("expired_drafts_removed", count=removed)
            return valid, removed

    def read_drafts(self) -> List[DealRoomDraft]:
        """All unexpired drafts. Expired ones are dropped from disk as a side effect."""
        valid, _ = self._purge_expired()
        return valid

    def write_drafts(self, drafts: List[DealRoomDraft]) -> None:
        self._drafts.write(dump_records(drafts))

    def find_draft_by_project_and_session(self, project_id: str, session_id: str) -> Optional[DealRoomDraft]:
        for draft in self.read_drafts():
            if draft.project_id == project_id and draft.session_id == session_id:
                return draft
        return None

    def find_drafts_by_project(self, project_id: str) -> List[DealRoomDraft]:
        return [draft for draft in self.read_drafts() if draft.project_id == project_id]

    @staticmethod
    def _index_of(drafts: List[DealRoomDraft], project_id: str, session_id: str) -> Optional[int]:
        for index, draft in enumerate(drafts):
            if draft.project_id == project_id and draft.session_id == session_id:
                return index
        return None

    def upsert_draft(self, data: DraftCreate, mode: DraftUpsert = DraftUpsert.REPLACE) -> DealRoomDraft:
        """Save a draft for ``(project_id, session_id)``, bumping its version.

        ``REPLACE`` swaps the stored draft data for ``data.draft_data``;
        ``MERGE`` lays the fields set in ``data.draft_data`` over the stored
        ones. Either way the draft keeps its id, creation time, base version,
        base data and last saved version, and its expiry slides forward.
        """
        with self._drafts.transaction():
            drafts = self.read_drafts()
            index = self._index_of(drafts, data.project_id, data.session_id)
            now = utcnow()
            if index is None:
                draft = DealRoomDraft(
                    id=generate_draft_id(),
                    project_id=data.project_id,
                    session_id=data.session_id,
                    user_id=data.user_id,
                    draft_data=data.draft_data,
                    version=1,
                    base_version=data.base_version,
                    base_data=data.base_data,
                    is_auto_save=data.is_auto_save,
                    created_at=now,
                    updated_at=now,
                    expires_at=self._expiry_from(now),
                )
                drafts.append(draft)
            else:
                existing = drafts[index]
                if mode == DraftUpsert.MERGE:
                    fields = {**existing.draft_data.set_fields(), **data.draft_data.set_fields()}
                    draft_data = DraftData(**fields)
                else:
                    draft_data = data.draft_data
                draft = DealRoomDraft(
                    id=existing.id,
                    project_id=existing.project_id,
                    session_id=existing.session_id,
                    user_id=data.user_id or existing.user_id,
                    draft_data=draft_data,
                    version=existing.version + 1,
                    last_saved_version=existing.last_saved_version,
                    base_version=existing.base_version,
                    base_data=existing.base_data,
                    is_auto_save=data.is_auto_save,
                    created_at=existing.created_at,
                    updated_at=now,
                    expires_at=self._expiry_from(now),
                )
                drafts[index] = draft
            self.write_drafts(drafts)
        logger.info(
            "draft_saved",
            project_id=draft.project_id,
            session_id=draft.session_id,
            version=draft.version,
            mode=mode.value,
            auto_save=draft.is_auto_save,
        )
        return draft

    def create_draft(self, data: DraftCreate) -> DealRoomDraft:
        return self.upsert_draft(data, DraftUpsert.REPLACE)

    def update_draft(
        self,
        project_id: str,
        session_id: str,
        *,
        draft_data: Optional[DraftData] = None,
        is_auto_save: Optional[bool] = None,
        version: Optional[int] = None,
        last_saved_version: Optional[int] = None,
        base_version: Optional[int] = None,
        base_data: Optional[DealRoomSnapshot] = None,
    ) -> DealRoomDraft:
        with self._drafts.transaction():
            drafts = self.read_drafts()
            index = self._index_of(drafts, project_id, session_id)
            if index is None:
                raise NotFoundError("Draft not found")
            existing = drafts[index]
            merged = existing.draft_data
            if draft_data is not None:
                merged = DraftData(**{**existing.draft_data.set_fields(), **draft_data.set_fields()})
            now = utcnow()
            draft = existing.model_copy(
                update={
                    "draft_data": merged,
                    "version": existing.version + 1 if version is None else version,
                    "last_saved_version": existing.last_saved_version if last_saved_version is None else last_saved_version,
                    "base_version": existing.base_version if base_version is None else base_version,
                    "base_data": existing.base_data if base_data is None else base_data,
                    "is_auto_save": existing.is_auto_save if is_auto_save is None else is_auto_save,
                    "updated_at": now,
                    "expires_at": self._expiry_from(now),
                }
            )
            drafts[index] = draft
            self.write_drafts(drafts)
        return draft

    def delete_draft(self, project_id: str, session_id: str) -> bool:
        with self._drafts.transaction():
            drafts = self.read_drafts()
            index = self._index_of(drafts, project_id, session_id)
            if index is None:
                return False
            del drafts[index]
            self.write_drafts(drafts)
        logger.info("draft_deleted", project_id=project_id, session_id=session_id)
        return True

    def cleanup_expired_drafts(self) -> int:
        _, removed = self._purge_expired()
        return removed

    # versions

    def read_versions(self) -> List[DealRoomVersion]:
        return parse_records(DealRoomVersion, self._versions.read(), "version")

    def write_versions(self, versions: List[DealRoomVersion]) -> None:
        self._versions.write(dump_records(versions))

    def create_version(
        self,
        project_id: str,
        data: DealRoomSnapshot,
        change_description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DealRoomVersion:
        keep = self.config.max_versions_per_project
        with self._versions.transaction():
            versions = self.read_versions()
            numbers = [v.version for v in versions if v.project_id == project_id]
            version = DealRoomVersion(
                id=generate_id("version"),
                project_id=project_id,
                version=max(numbers) + 1 if numbers else 1,
                data=data,
                change_description=change_description,
                created_at=utcnow(),
                created_by=created_by,
            )
            versions.append(version)

            project_versions = [v for v in versions if v.project_id == project_id]
            if len(project_versions) > keep:
                kept = sorted(project_versions, key=lambda v: v.version, reverse=True)[:keep]
                others = [v for v in versions if v.project_id != project_id]
                versions = others + kept
                logger.info(
                    "versions_pruned",
                    project_id=project_id,
                    removed=len(project_versions) - len(kept),
                )
            self.write_versions(versions)
        logger.info("version_created", project_id=project_id, version=version.version)
        return version

    def get_versions_by_project(self, project_id: str, limit: int = 10) -> List[DealRoomVersion]:
        versions = [v for v in self.read_versions() if v.project_id == project_id]
        versions.sort(key=lambda v: v.version, reverse=True)
        return versions[:limit]

    def get_version_by_id(self, version_id: str) -> Optional[DealRoomVersion]:
        for version in self.read_versions():
            if version.id == version_id:
                return version
        return None

    def get_version_by_number(self, project_id: str, number: int) -> Optional[DealRoomVersion]:
        for version in self.read_versions():
            if version.project_id == project_id and version.version == number:
                return version
        return None

    def get_latest_version_number(self, project_id: str) -> int:
        latest = self.get_versions_by_project(project_id, 1)
        return latest[0].version if latest else 0

    # conflicts

    def read_conflicts(self) -> List[ConflictResolution]:
        return parse_records(ConflictResolution, self._conflicts.read(), "conflict")

    def write_conflicts(self, conflicts: List[ConflictResolution]) -> None:
        self._conflicts.write(dump_records(conflicts))

    def create_conflict(self, data: ConflictCreate) -> ConflictResolution:
        with self._conflicts.transaction():
            conflicts = self.read_conflicts()
            conflict = ConflictResolution(
                **dict(data),
                conflict_id=generate_conflict_id(),
                created_at=utcnow(),
            )
            conflicts.append(conflict)
            self.write_conflicts(conflicts)
        logger.warning(
            "conflict_recorded",
            conflict_id=conflict.conflict_id,
            project_id=conflict.project_id,
            session_id=conflict.session_id,
            fields=conflict.conflict_fields,
        )
        return conflict

    def resolve_conflict(
        self, conflict_id: str, resolution: Resolution, resolved_data: Optional[DraftData] = None
    ) -> ConflictResolution:
        with self._conflicts.transaction():
            conflicts = self.read_conflicts()
            for index, conflict in enumerate(conflicts):
                if conflict.conflict_id == conflict_id:
                    break
            else:
                raise NotFoundError("Conflict not found")
            resolved = conflict.model_copy(
                update={"resolution": resolution, "resolved_data": resolved_data, "resolved_at": utcnow()}
            )
            conflicts[index] = resolved
            self.write_conflicts(conflicts)
        logger.info("conflict_resolved", conflict_id=conflict_id, resolution=resolution)
        return resolved

    def get_unresolved_conflicts_by_project(self, project_id: str) -> List[ConflictResolution]:
        return [c for c in self.read_conflicts() if c.project_id == project_id and c.resolved_at is None]

    def get_conflict_by_id(self, conflict_id: str) -> Optional[ConflictResolution]:
        for conflict in self.read_conflicts():
            if conflict.conflict_id == conflict_id:
                return conflict
        return None
