from fastapi import APIRouter, Depends

from ..schemas import ConflictResolve
from ..service import DealRoomService, get_deal_room_service

router = APIRouter()


@router.post("/conflicts/{conflict_id}/resolve")
def resolve_conflict(
    conflict_id: str,
    payload: ConflictResolve,
    service: DealRoomService = Depends(get_deal_room_service),
):
    return service.resolve_conflict(conflict_id, payload.resolution, payload.custom_data)


@router.post("/drafts/cleanup")
def cleanup_drafts(service: DealRoomService = Depends(get_deal_room_service)):
    return {"removed": service.cleanup_expired_drafts()}
