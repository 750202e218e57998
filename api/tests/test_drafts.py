import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from dealroom.config import StorageConfig
from dealroom.drafts import DraftStore
from dealroom.errors import NotFoundError, StorageError
from dealroom.schemas import ConflictCreate, DealRoomSnapshot, DraftCreate, DraftData, DraftUpsert
from dealroom.scripts import cleanup_drafts
from dealroom.utils import utcnow


def draft_create(project_id="proj-1", session_id="sess-1", **data):
    return DraftCreate(project_id=project_id, session_id=session_id, draft_data=DraftData(**data))


def expire_all(store: DraftStore):
    raw = json.loads(store.config.drafts_path.read_text())
    for item in raw:
        item["expiresAt"] = (utcnow() - timedelta(minutes=1)).isoformat()
    store.config.drafts_path.write_text(json.dumps(raw))


def test_data_files_created_empty(draft_store, storage_config):
    for path in (storage_config.drafts_path, storage_config.versions_path, storage_config.conflicts_path):
        assert json.loads(path.read_text()) == []


def test_repeated_saves_bump_version(draft_store):
    first = draft_store.upsert_draft(draft_create(investment_blurb="X"))
    second = draft_store.upsert_draft(draft_create(investment_blurb="Y"))
    assert (first.version, second.version) == (1, 2)
    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.expires_at >= first.expires_at


def test_replace_drops_fields_missing_from_new_payload(draft_store):
    draft_store.upsert_draft(draft_create(investment_blurb="X", investment_summary="S"))
    draft = draft_store.upsert_draft(draft_create(investment_blurb="Y"))
    assert draft.draft_data.set_fields() == {"investment_blurb": "Y"}


def test_merge_keeps_fields_missing_from_new_payload(draft_store):
    draft_store.upsert_draft(draft_create(investment_blurb="X", investment_summary="S"))
    draft = draft_store.upsert_draft(draft_create(investment_blurb="Y"), DraftUpsert.MERGE)
    assert draft.draft_data.set_fields() == {"investment_blurb": "Y", "investment_summary": "S"}
    stored = draft_store.find_draft_by_project_and_session("proj-1", "sess-1")
    assert stored.draft_data.set_fields() == {"investment_blurb": "Y", "investment_summary": "S"}


def test_drafts_are_keyed_by_project_and_session(draft_store):
    draft_store.upsert_draft(draft_create(session_id="a"))
    draft_store.upsert_draft(draft_create(session_id="b"))
    draft_store.upsert_draft(draft_create(project_id="proj-2", session_id="a"))
    assert len(draft_store.find_drafts_by_project("proj-1")) == 2
    assert draft_store.find_draft_by_project_and_session("proj-2", "a").version == 1


def test_expired_drafts_are_invisible_and_purged(draft_store):
    draft_store.upsert_draft(draft_create())
    expire_all(draft_store)

    assert draft_store.read_drafts() == []
    assert draft_store.find_draft_by_project_and_session("proj-1", "sess-1") is None
    assert json.loads(draft_store.config.drafts_path.read_text()) == []


def test_save_purges_expired_drafts(draft_store):
    draft_store.upsert_draft(draft_create(session_id="a"))
    draft_store.upsert_draft(draft_create(session_id="b"))
    expire_all(draft_store)
    draft_store.upsert_draft(draft_create(session_id="c"))

    assert draft_store.cleanup_expired_drafts() == 0
    assert [d.session_id for d in draft_store.read_drafts()] == ["c"]


def test_cleanup_counts_only_expired(draft_store):
    draft_store.upsert_draft(draft_create(session_id="a"))
    draft_store.upsert_draft(draft_create(session_id="b"))
    expire_all(draft_store)
    assert draft_store.cleanup_expired_drafts() == 2
    assert draft_store.cleanup_expired_drafts() == 0


def test_update_draft(draft_store):
    draft_store.upsert_draft(draft_create(investment_blurb="X"))
    draft = draft_store.update_draft(
        "proj-1", "sess-1", draft_data=DraftData(investment_summary="S"), last_saved_version=1
    )
    assert draft.version == 2
    assert draft.last_saved_version == 1
    assert draft.draft_data.set_fields() == {"investment_blurb": "X", "investment_summary": "S"}

    with pytest.raises(NotFoundError, match="Draft not found"):
        draft_store.update_draft("proj-1", "missing")


def test_delete_draft(draft_store):
    draft_store.upsert_draft(draft_create())
    assert draft_store.delete_draft("proj-1", "sess-1") is True
    assert draft_store.delete_draft("proj-1", "sess-1") is False


def test_version_numbers_and_pruning(draft_store):
    for n in range(12):
        draft_store.create_version("proj-1", DealRoomSnapshot(investment_blurb=f"v{n + 1}"))
    draft_store.create_version("proj-2", DealRoomSnapshot())

    versions = draft_store.get_versions_by_project("proj-1", limit=100)
    assert [v.version for v in versions] == list(range(12, 2, -1))
    assert versions[0].data.investment_blurb == "v12"
    assert draft_store.get_latest_version_number("proj-1") == 12
    assert draft_store.get_latest_version_number("proj-2") == 1
    assert draft_store.get_latest_version_number("proj-3") == 0

    # numbering continues past pruned versions
    assert draft_store.create_version("proj-1", DealRoomSnapshot()).version == 13


def test_version_lookup(draft_store):
    created = draft_store.create_version("proj-1", DealRoomSnapshot(), "first", "user-1")
    assert draft_store.get_version_by_id(created.id).change_description == "first"
    assert draft_store.get_version_by_number("proj-1", 1).created_by == "user-1"
    assert draft_store.get_version_by_id("version_missing") is None


def test_conflict_lifecycle(draft_store):
    conflict = draft_store.create_conflict(
        ConflictCreate(
            project_id="proj-1",
            session_id="sess-1",
            conflict_type="concurrent_edit",
            local_version=2,
            server_version=3,
            local_data=DraftData(investment_blurb="mine"),
            server_data=DraftData(investment_blurb="theirs"),
            conflict_fields=["investmentBlurb"],
        )
    )
    assert conflict.conflict_id.startswith("conflict_")
    assert [c.conflict_id for c in draft_store.get_unresolved_conflicts_by_project("proj-1")] == [conflict.conflict_id]

    resolved = draft_store.resolve_conflict(conflict.conflict_id, "use_server", DraftData(investment_blurb="theirs"))
    assert resolved.resolved_at is not None
    assert draft_store.get_unresolved_conflicts_by_project("proj-1") == []
    stored = draft_store.get_conflict_by_id(conflict.conflict_id)
    assert stored.resolution == "use_server"
    assert stored.local_data.set_fields() == {"investment_blurb": "mine"}

    with pytest.raises(NotFoundError, match="Conflict not found"):
        draft_store.resolve_conflict("conflict_missing", "merge")


def test_corrupt_file_raises_storage_error(draft_store, storage_config):
    storage_config.drafts_path.write_text("{not json")
    with pytest.raises(StorageError, match="Failed to read draft data"):
        draft_store.read_drafts()


def test_concurrent_saves_do_not_lose_updates(draft_store):
    def save(n):
        return draft_store.upsert_draft(draft_create(session_id=f"s{n % 4}", investment_blurb=str(n)))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(save, range(40)))

    drafts = draft_store.read_drafts()
    assert len(drafts) == 4
    assert sum(d.version for d in drafts) == 40


def test_cleanup_script_sweeps_expired_drafts(draft_store, storage_config, monkeypatch):
    draft_store.upsert_draft(draft_create(session_id="old"))
    expire_all(draft_store)
    monkeypatch.setattr(StorageConfig, "from_env", classmethod(lambda cls: storage_config))

    assert cleanup_drafts.main() == 1
    assert json.loads(storage_config.drafts_path.read_text()) == []
