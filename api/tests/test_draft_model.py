from datetime import timedelta

import pytest

from dealroom import draft_model
from dealroom.schemas import DraftData, ExternalLinkInput, KeyInfoInput


def candidate(draft_data=None, project_id="proj-1", session_id="sess-1"):
    return {"projectId": project_id, "sessionId": session_id, "draftData": draft_data or {}}


def test_validate_accepts_empty_draft():
    result = draft_model.validate(candidate())
    assert result.is_valid
    assert result.errors == []


def test_validate_requires_project_and_session():
    result = draft_model.validate(candidate(project_id="", session_id="  "))
    assert not result.is_valid
    assert result.errors == ["Project ID is required", "Session ID is required"]


def test_blurb_length_limit():
    assert draft_model.validate(candidate({"investmentBlurb": "a" * 500})).is_valid
    result = draft_model.validate(candidate({"investmentBlurb": "a" * 501}))
    assert result.errors == ["Investment blurb must be less than 500 characters"]


def test_summary_length_limit():
    assert draft_model.validate(candidate({"investmentSummary": "s" * 10000})).is_valid
    result = draft_model.validate(candidate({"investmentSummary": "s" * 10001}))
    assert "10,000 characters" in result.errors[0]


def test_wrong_types_are_reported_not_raised():
    result = draft_model.validate(candidate({"investmentBlurb": 42, "keyInfo": "nope", "externalLinks": {}}))
    assert result.errors == [
        "Investment blurb must be a string",
        "Key info must be an array",
        "External links must be an array",
    ]


def test_key_info_item_errors_use_one_based_indices():
    items = [
        {"name": "Deck", "link": "https://example.com/deck.pdf", "order": 0},
        {"name": "", "link": "not a url", "order": -1},
    ]
    result = draft_model.validate(candidate({"keyInfo": items}))
    assert result.errors == [
        "Key info item 2: Name is required",
        "Key info item 2: Link must be a valid URL",
        "Key info item 2: Order must be a non-negative number",
    ]


def test_external_link_errors_collect_everything():
    links = [{"name": "Site", "url": "example.com", "order": 0}, {"order": "1"}]
    result = draft_model.validate(candidate({"externalLinks": links}))
    assert result.errors == [
        "External link 1: URL must be a valid URL",
        "External link 2: Name is required",
        "External link 2: URL is required",
        "External link 2: Order must be a non-negative number",
    ]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("https://example.com", True),
        ("http://localhost:8000/path?q=1", True),
        ("ftp://host/x", True),
        ("example.com", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_url(value, expected):
    assert draft_model.is_valid_url(value) is expected


def test_is_valid_image_mime_type():
    assert draft_model.is_valid_image_mime_type("image/JPEG")
    assert draft_model.is_valid_image_mime_type("image/webp")
    assert not draft_model.is_valid_image_mime_type("image/gif")
    assert not draft_model.is_valid_image_mime_type(None)


def test_validate_deal_room_fields_checks_photo_metadata():
    photo = {"filename": "x.gif", "originalName": "", "mimeType": "image/gif", "size": 0}
    result = draft_model.validate_deal_room_fields("proj-1", {"showcasePhoto": photo})
    assert result.errors == [
        "Showcase photo original name is required",
        "Showcase photo must be a valid image format (JPEG, PNG, WebP)",
        "Showcase photo size must be a positive number",
        "Showcase photo upload date is required",
    ]


def test_detect_conflicts_same_field_different_values():
    local = DraftData(investment_blurb="A")
    server = DraftData(investment_blurb="B")
    assert draft_model.detect_conflicts(local, server) == ["investmentBlurb"]


def test_detect_conflicts_disjoint_fields():
    local = DraftData(investment_blurb="A")
    server = DraftData(investment_summary="B")
    assert draft_model.detect_conflicts(local, server) == []


def test_detect_conflicts_equal_lists_do_not_conflict():
    items = [KeyInfoInput(name="Deck", link="https://example.com", order=0)]
    local = DraftData(key_info=items, external_links=[])
    server = DraftData(
        key_info=[KeyInfoInput(name="Deck", link="https://example.com", order=0)],
        external_links=[ExternalLinkInput(name="Site", url="https://example.org", order=0)],
    )
    assert draft_model.detect_conflicts(local, server) == ["externalLinks"]


def test_detect_conflicts_reports_in_field_order():
    local = DraftData(showcase_photo=None, investment_summary="x", investment_blurb="y")
    server = DraftData(investment_blurb="z", investment_summary="w", showcase_photo=None)
    assert draft_model.detect_conflicts(local, server) == ["investmentBlurb", "investmentSummary"]


def test_changed_fields_keeps_only_differences():
    before = DraftData(investment_blurb="same", investment_summary="old", key_info=[])
    after = DraftData(investment_blurb="same", investment_summary="new", key_info=[], external_links=[])
    changed = draft_model.changed_fields(before, after)
    assert changed.set_fields() == {"investment_summary": "new", "external_links": []}


def test_merge_data_strategies():
    local = DraftData(investment_blurb="local")
    server = DraftData(investment_blurb="server", investment_summary="server summary")

    assert draft_model.merge_data(local, server, "use_local") is local
    assert draft_model.merge_data(local, server, "use_server") is server

    merged = draft_model.merge_data(local, server, "merge")
    assert merged.set_fields() == {"investment_blurb": "local", "investment_summary": "server summary"}


def test_merge_data_unknown_resolution_falls_back_to_local():
    local = DraftData(investment_blurb="local")
    assert draft_model.merge_data(local, DraftData(), "something-else") is local


def test_generated_ids_have_prefixes_and_differ():
    ids = {draft_model.generate_draft_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("draft_") for i in ids)
    assert draft_model.generate_session_id().startswith("session_")
    assert draft_model.generate_conflict_id().startswith("conflict_")


def test_create_default():
    draft = draft_model.create_default("proj-1", "sess-1")
    assert draft.version == 1
    assert draft.draft_data.set_fields() == {}
    assert draft.last_saved_version is None
    assert draft.expires_at - draft.created_at == timedelta(hours=24)


def test_draft_data_serialization_omits_unset_fields():
    data = DraftData(investment_blurb="hello", showcase_photo=None)
    assert data.model_dump(mode="json", by_alias=True) == {"investmentBlurb": "hello", "showcasePhoto": None}
    restored = DraftData.model_validate(data.model_dump(mode="json", by_alias=True))
    assert restored.is_set("showcase_photo")
    assert not restored.is_set("investment_summary")
