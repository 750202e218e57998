from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

Number = Union[int, float]
ConflictType = Literal["concurrent_edit", "version_mismatch", "data_corruption"]
Resolution = Literal["use_local", "use_server", "merge", "manual"]
SaveState = Literal["saved", "saving", "unsaved", "error", "conflict"]

# python attribute -> wire name, in conflict-reporting order
DEAL_ROOM_FIELDS = (
    ("investment_blurb", "investmentBlurb"),
    ("investment_summary", "investmentSummary"),
    ("key_info", "keyInfo"),
    ("external_links", "externalLinks"),
    ("showcase_photo", "showcasePhoto"),
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DraftUpsert(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


class ShowcasePhoto(CamelModel):
    filename: str
    original_name: str
    mime_type: str
    size: int
    uploaded_at: datetime


class KeyInfoInput(CamelModel):
    name: str
    link: str
    order: Optional[Number] = None


class ExternalLinkInput(CamelModel):
    name: str
    url: str
    order: Optional[Number] = None


class KeyInfoItem(CamelModel):
    id: str
    name: str
    link: str
    order: Number


class ExternalLink(CamelModel):
    id: str
    name: str
    url: str
    order: Number


class DraftData(CamelModel):
    """Sparse deal room payload.

    A field that was never assigned means "not edited"; it is left out of
    the serialized form so the distinction survives a trip through disk.
    Explicitly assigning ``None`` (only meaningful for ``showcase_photo``)
    counts as an edit that clears the field.
    """

    showcase_photo: Optional[ShowcasePhoto] = None
    investment_blurb: Optional[str] = None
    investment_summary: Optional[str] = None
    key_info: Optional[List[KeyInfoInput]] = None
    external_links: Optional[List[ExternalLinkInput]] = None

    @model_serializer(mode="wrap")
    def _drop_unset(self, handler):
        data = handler(self)
        keep = set()
        for name in self.model_fields_set:
            keep.add(name)
            keep.add(to_camel(name))
        return {key: value for key, value in data.items() if key in keep}

    def is_set(self, name: str) -> bool:
        return name in self.model_fields_set

    def set_fields(self) -> Dict[str, Any]:
        """Attribute name -> value for every edited field."""
        return {name: getattr(self, name) for name, _ in DEAL_ROOM_FIELDS if self.is_set(name)}


class DealRoomCreate(CamelModel):
    project_id: str
    showcase_photo: Optional[ShowcasePhoto] = None
    investment_blurb: str = ""
    investment_summary: str = ""
    key_info: List[KeyInfoInput] = Field(default_factory=list)
    external_links: List[ExternalLinkInput] = Field(default_factory=list)


class DealRoomSnapshot(CamelModel):
    showcase_photo: Optional[ShowcasePhoto] = None
    investment_blurb: str = ""
    investment_summary: str = ""
    key_info: List[KeyInfoItem] = Field(default_factory=list)
    external_links: List[ExternalLink] = Field(default_factory=list)

    def as_draft_data(self) -> DraftData:
        # item ids are server-minted, so leave them out when comparing with drafts
        return DraftData(
            showcase_photo=self.showcase_photo,
            investment_blurb=self.investment_blurb,
            investment_summary=self.investment_summary,
            key_info=[KeyInfoInput(name=i.name, link=i.link, order=i.order) for i in self.key_info],
            external_links=[ExternalLinkInput(name=l.name, url=l.url, order=l.order) for l in self.external_links],
        )


class DealRoom(DealRoomSnapshot):
    id: str
    project_id: str
    created_at: datetime
    updated_at: datetime

    def snapshot(self) -> DealRoomSnapshot:
        return DealRoomSnapshot(
            showcase_photo=self.showcase_photo,
            investment_blurb=self.investment_blurb,
            investment_summary=self.investment_summary,
            key_info=list(self.key_info),
            external_links=list(self.external_links),
        )


class DealRoomDraft(CamelModel):
    id: str
    project_id: str
    session_id: str
    user_id: Optional[str] = None
    draft_data: DraftData = Field(default_factory=DraftData)
    version: int = 1
    last_saved_version: Optional[int] = None
    base_version: int = 0
    base_data: Optional[DealRoomSnapshot] = None
    is_auto_save: bool = True
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @property
    def has_unsaved_changes(self) -> bool:
        return self.last_saved_version is None or self.version > self.last_saved_version


class DraftCreate(CamelModel):
    project_id: str
    session_id: str
    draft_data: DraftData = Field(default_factory=DraftData)
    is_auto_save: bool = True
    user_id: Optional[str] = None
    base_version: int = 0
    base_data: Optional[DealRoomSnapshot] = None


class DealRoomVersion(CamelModel):
    id: str
    project_id: str
    version: int
    data: DealRoomSnapshot
    change_description: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None


class ConflictCreate(CamelModel):
    project_id: str
    session_id: str
    conflict_type: ConflictType
    local_version: int
    server_version: int
    local_data: DraftData
    server_data: DraftData
    conflict_fields: List[str]


class ConflictResolution(ConflictCreate):
    conflict_id: str
    resolved_data: Optional[DraftData] = None
    resolution: Optional[Resolution] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class SaveStatus(CamelModel):
    status: SaveState
    last_saved: Optional[datetime] = None
    last_auto_save: Optional[datetime] = None
    has_unsaved_changes: bool
    version: int
    error: Optional[str] = None
    conflict_id: Optional[str] = None


class RecoveredDraft(CamelModel):
    draft_data: DraftData
    version: int
    is_auto_save: bool
    updated_at: datetime


class PublishResult(CamelModel):
    deal_room: DealRoom
    version: DealRoomVersion


class ConflictResolveResult(CamelModel):
    deal_room: DealRoom
    conflict: ConflictResolution


class SectionStatus(CamelModel):
    showcase_photo: bool
    investment_blurb: bool
    investment_summary: bool
    key_info: bool
    external_links: bool


class CompletionStatus(CamelModel):
    completion_percentage: int
    completed_sections: List[str]
    total_sections: int
    section_status: SectionStatus


# request bodies; field values stay loose so the service reports its own messages

class InvestmentBlurbUpdate(CamelModel):
    investment_blurb: Any = None


class InvestmentSummaryUpdate(CamelModel):
    investment_summary: Any = None


class KeyInfoUpdate(CamelModel):
    key_info: Any = None


class ExternalLinksUpdate(CamelModel):
    external_links: Any = None


class DraftSave(CamelModel):
    session_id: str
    draft_data: Dict[str, Any] = Field(default_factory=dict)
    is_auto_save: bool = True
    user_id: Optional[str] = None
    mode: DraftUpsert = DraftUpsert.REPLACE


class DraftPublish(CamelModel):
    session_id: str
    change_description: Optional[str] = None


class VersionRestore(CamelModel):
    session_id: str


class ConflictResolve(CamelModel):
    resolution: str
    custom_data: Optional[Dict[str, Any]] = None
