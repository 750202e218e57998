"""Error taxonomy for the deal room core.

Messages are matched by callers (and mapped to HTTP status codes by the
API layer), so keep the wording stable.
"""

from typing import List, Optional


class DealRoomError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DealRoomError):
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class NotFoundError(DealRoomError):
    status_code = 404


class ConflictError(DealRoomError):
    status_code = 409

    def __init__(self, message: str, conflict_id: Optional[str] = None):
        super().__init__(message)
        self.conflict_id = conflict_id


class StorageError(DealRoomError):
    status_code = 500
