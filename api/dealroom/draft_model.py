"""Validation, diffing and merging of deal room draft payloads.

Everything here is pure: no file access, no clock except where a default
draft is built. Payloads arrive as plain dicts with wire (camelCase) keys
so that type mistakes are reported as validation messages rather than
parser exceptions.
"""

from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import structlog
from pydantic import AnyUrl, BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .schemas import DEAL_ROOM_FIELDS, DealRoomDraft, DraftData
from .utils import canonical_json, generate_id, utcnow

logger = structlog.get_logger(__name__)

MAX_BLURB_LENGTH = 500
MAX_SUMMARY_LENGTH = 10000
VALID_IMAGE_MIME_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MERGE_RESOLUTIONS = ("use_local", "use_server", "merge")

_url_adapter = TypeAdapter(AnyUrl)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str]


def is_valid_url(value: Any) -> bool:
    """True when ``value`` parses as an absolute URL of any scheme."""
    if not isinstance(value, str):
        return False
    try:
        _url_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def is_valid_image_mime_type(mime_type: Any) -> bool:
    return isinstance(mime_type, str) and mime_type.lower() in VALID_IMAGE_MIME_TYPES


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or value.strip() == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def blurb_errors(value: Any) -> List[str]:
    if not isinstance(value, str):
        return ["Investment blurb must be a string"]
    if len(value) > MAX_BLURB_LENGTH:
        return ["Investment blurb must be less than 500 characters"]
    return []


def summary_errors(value: Any) -> List[str]:
    if not isinstance(value, str):
        return ["Investment summary must be a string"]
    if len(value) > MAX_SUMMARY_LENGTH:
        return ["Investment summary must be less than 10,000 characters"]
    return []


def _link_list_errors(items: Any, label: str, list_label: str, url_key: str, url_label: str) -> List[str]:
    if not isinstance(items, list):
        return [f"{list_label} must be an array"]
    errors = []
    for index, item in enumerate(items, start=1):
        item = item if isinstance(item, Mapping) else {}
        prefix = f"{label} {index}"
        if _is_blank(item.get("name")):
            errors.append(f"{prefix}: Name is required")
        url = item.get(url_key)
        if _is_blank(url):
            errors.append(f"{prefix}: {url_label} is required")
        elif not is_valid_url(url):
            errors.append(f"{prefix}: {url_label} must be a valid URL")
        order = item.get("order")
        if not _is_number(order) or order < 0:
            errors.append(f"{prefix}: Order must be a non-negative number")
    return errors


def key_info_errors(items: Any) -> List[str]:
    return _link_list_errors(items, "Key info item", "Key info", "link", "Link")


def external_link_errors(items: Any) -> List[str]:
    return _link_list_errors(items, "External link", "External links", "url", "URL")


def showcase_photo_errors(photo: Any) -> List[str]:
    if photo is None:
        return []
    if not isinstance(photo, Mapping):
        return ["Showcase photo must be an object"]
    errors = []
    if _is_blank(photo.get("filename")):
        errors.append("Showcase photo filename is required")
    if _is_blank(photo.get("originalName")):
        errors.append("Showcase photo original name is required")
    mime_type = photo.get("mimeType")
    if _is_blank(mime_type):
        errors.append("Showcase photo MIME type is required")
    elif not is_valid_image_mime_type(mime_type):
        errors.append("Showcase photo must be a valid image format (JPEG, PNG, WebP)")
    size = photo.get("size")
    if not _is_number(size) or size <= 0:
        errors.append("Showcase photo size must be a positive number")
    if not photo.get("uploadedAt"):
        errors.append("Showcase photo upload date is required")
    return errors


def content_errors(payload: Mapping[str, Any]) -> List[str]:
    """Rules shared by drafts and published deal rooms, for the keys present."""
    errors: List[str] = []
    if "investmentBlurb" in payload:
        errors.extend(blurb_errors(payload["investmentBlurb"]))
    if "investmentSummary" in payload:
        errors.extend(summary_errors(payload["investmentSummary"]))
    if payload.get("keyInfo") is not None:
        errors.extend(key_info_errors(payload["keyInfo"]))
    if payload.get("externalLinks") is not None:
        errors.extend(external_link_errors(payload["externalLinks"]))
    return errors


def validate(candidate: Mapping[str, Any]) -> ValidationResult:
    """Check a draft candidate ``{projectId, sessionId, draftData}``.

    Every violation is collected; nothing short-circuits.
    """
    errors: List[str] = []
    if _is_blank(candidate.get("projectId")):
        errors.append("Project ID is required")
    if _is_blank(candidate.get("sessionId")):
        errors.append("Session ID is required")
    draft_data = candidate.get("draftData")
    if draft_data is not None:
        if isinstance(draft_data, Mapping):
            errors.extend(content_errors(draft_data))
        else:
            errors.append("Draft data must be an object")
    return ValidationResult(is_valid=not errors, errors=errors)


def validate_deal_room_fields(project_id: Any, fields: Mapping[str, Any]) -> ValidationResult:
    errors: List[str] = []
    if _is_blank(project_id):
        errors.append("Project ID is required")
    errors.extend(content_errors(fields))
    if fields.get("showcasePhoto") is not None:
        errors.extend(showcase_photo_errors(fields["showcasePhoto"]))
    return ValidationResult(is_valid=not errors, errors=errors)


def _comparable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_comparable(item) for item in value]
    return value


def _differs(left: Any, right: Any) -> bool:
    left, right = _comparable(left), _comparable(right)
    if isinstance(left, (list, dict)) or isinstance(right, (list, dict)):
        return canonical_json(left) != canonical_json(right)
    return left != right


def detect_conflicts(local: DraftData, server: DraftData) -> List[str]:
    """Wire names of the fields both sides set to different values."""
    conflicts = []
    for name, wire_name in DEAL_ROOM_FIELDS:
        if not (local.is_set(name) and server.is_set(name)):
            continue
        if _differs(getattr(local, name), getattr(server, name)):
            conflicts.append(wire_name)
    return conflicts


def changed_fields(before: DraftData, after: DraftData) -> DraftData:
    """The subset of ``after`` whose values differ from ``before``."""
    changed: Dict[str, Any] = {}
    for name, _ in DEAL_ROOM_FIELDS:
        if not after.is_set(name):
            continue
        if not before.is_set(name) or _differs(getattr(before, name), getattr(after, name)):
            changed[name] = getattr(after, name)
    return DraftData(**changed)


def merge_data(local: DraftData, server: DraftData, resolution: str) -> DraftData:
    if resolution == "use_server":
        return server
    if resolution == "merge":
        merged: Dict[str, Any] = {}
        for name, _ in DEAL_ROOM_FIELDS:
            if local.is_set(name):
                merged[name] = getattr(local, name)
            elif server.is_set(name):
                merged[name] = getattr(server, name)
        return DraftData(**merged)
    if resolution != "use_local":
        logger.warning("unknown_merge_resolution", resolution=resolution, fallback="use_local")
    return local


def generate_draft_id() -> str:
    return generate_id("draft")


def generate_session_id() -> str:
    return generate_id("session")


def generate_conflict_id() -> str:
    return generate_id("conflict")


def create_default(project_id: str, session_id: str, ttl_hours: int = 24, user_id: Optional[str] = None) -> DealRoomDraft:
    now = utcnow()
    return DealRoomDraft(
        id=generate_draft_id(),
        project_id=project_id,
        session_id=session_id,
        user_id=user_id,
        draft_data=DraftData(),
        version=1,
        is_auto_save=True,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    )
