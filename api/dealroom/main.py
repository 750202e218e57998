import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS
from .errors import DealRoomError, StorageError, ValidationError
from .logs import configure_logging
from .routers import conflicts, deal_room

logger = structlog.get_logger(__name__)

app = FastAPI(title="Deal Room API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    configure_logging()


@app.exception_handler(DealRoomError)
def deal_room_error_handler(request: Request, exc: DealRoomError):
    if isinstance(exc, StorageError):
        logger.error("storage_error", method=request.method, path=request.url.path, error=exc.message)
    else:
        logger.info(
            "request_rejected",
            method=request.method,
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.message,
        )
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    conflict_id = getattr(exc, "conflict_id", None)
    if conflict_id:
        body["conflictId"] = conflict_id
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(deal_room.router, prefix="/api/projects", tags=["deal-room"])
app.include_router(conflicts.router, prefix="/api/deal-room", tags=["deal-room-admin"])


@app.get("/")
def root():
    return {"ok": True, "service": "deal-room-api"}
