from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from ..schemas import (
    DraftPublish,
    DraftSave,
    ExternalLinksUpdate,
    InvestmentBlurbUpdate,
    InvestmentSummaryUpdate,
    KeyInfoUpdate,
    VersionRestore,
)
from ..service import DealRoomService, get_deal_room_service

router = APIRouter()


@router.get("/{project_id}/deal-room")
def get_deal_room(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    return service.get_or_create_deal_room(project_id)


@router.put("/{project_id}/deal-room")
def update_deal_room(project_id: str, payload: dict, service: DealRoomService = Depends(get_deal_room_service)):
    return service.update_deal_room(project_id, payload)


@router.delete("/{project_id}/deal-room", status_code=status.HTTP_204_NO_CONTENT)
def delete_deal_room(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    service.delete_deal_room(project_id)


@router.get("/{project_id}/deal-room/completion-status")
def completion_status(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    return service.get_deal_room_completion_status(project_id)


@router.put("/{project_id}/deal-room/investment-blurb")
def update_investment_blurb(
    project_id: str,
    payload: InvestmentBlurbUpdate,
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.update_investment_blurb(project_id, payload.investment_blurb)


@router.put("/{project_id}/deal-room/investment-summary")
def update_investment_summary(
    project_id: str,
    payload: InvestmentSummaryUpdate,
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.update_investment_summary(project_id, payload.investment_summary)


@router.put("/{project_id}/deal-room/key-info")
def update_key_info(project_id: str, payload: KeyInfoUpdate, service: DealRoomService = Depends(get_deal_room_service)):
    return service.update_key_info(project_id, payload.key_info)


@router.put("/{project_id}/deal-room/external-links")
def update_external_links(
    project_id: str,
    payload: ExternalLinksUpdate,
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.update_external_links(project_id, payload.external_links)


@router.post("/{project_id}/deal-room/showcase-photo")
async def upload_showcase_photo(
    project_id: str,
    file: UploadFile = File(...),
    service: DealRoomService = Depends(get_deal_room_service),
):
    data = await file.read()
    return service.upload_showcase_photo(
        project_id, data, file.filename or "", file.content_type or "application/octet-stream"
    )


@router.get("/{project_id}/deal-room/showcase-photo")
def download_showcase_photo(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    found = service.read_showcase_photo(project_id)
    if found is None:
        raise HTTPException(404, "showcase photo not found")
    photo, data = found
    return Response(
        content=data,
        media_type=photo.mime_type,
        headers={"Content-Disposition": f'inline; filename="{photo.original_name}"'},
    )


@router.delete("/{project_id}/deal-room/showcase-photo")
def remove_showcase_photo(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    return service.remove_showcase_photo(project_id)


@router.post("/{project_id}/deal-room/draft")
def save_draft(project_id: str, payload: DraftSave, service: DealRoomService = Depends(get_deal_room_service)):
    return service.save_draft(
        project_id,
        payload.session_id,
        payload.draft_data,
        is_auto_save=payload.is_auto_save,
        user_id=payload.user_id,
        mode=payload.mode,
    )


@router.get("/{project_id}/deal-room/draft")
def get_draft(
    project_id: str,
    session_id: str = Query(alias="sessionId"),
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.get_draft(project_id, session_id)


@router.post("/{project_id}/deal-room/draft/publish")
def publish_draft(project_id: str, payload: DraftPublish, service: DealRoomService = Depends(get_deal_room_service)):
    return service.publish_draft(project_id, payload.session_id, payload.change_description)


@router.get("/{project_id}/deal-room/save-status")
def save_status(
    project_id: str,
    session_id: str = Query(alias="sessionId"),
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.get_save_status(project_id, session_id)


@router.get("/{project_id}/deal-room/recover-changes")
def recover_changes(
    project_id: str,
    session_id: str = Query(alias="sessionId"),
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.recover_unsaved_changes(project_id, session_id)


@router.get("/{project_id}/deal-room/versions")
def version_history(
    project_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.get_version_history(project_id, limit)


@router.post("/{project_id}/deal-room/versions/{version_id}/restore")
def restore_version(
    project_id: str,
    version_id: str,
    payload: VersionRestore,
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.restore_version(project_id, version_id, payload.session_id)


@router.get("/{project_id}/deal-room/conflicts")
def unresolved_conflicts(project_id: str, service: DealRoomService = Depends(get_deal_room_service)):
    return service.get_unresolved_conflicts(project_id)
