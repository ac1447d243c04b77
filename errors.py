class RoomServiceError(Exception):
    """Base class for failures a caller can see. Carries the HTTP status it maps to."""

    status_code = 500
    kind = "server_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"message": self.message, "kind": self.kind}


class ValidationError(RoomServiceError):
    status_code = 400
    kind = "validation_error"


class NotFoundError(RoomServiceError):
    status_code = 404
    kind = "not_found"


class RoomFullError(RoomServiceError):
    status_code = 403
    kind = "room_full"


class GoneError(RoomServiceError):
    status_code = 410
    kind = "gone"


class AllocationError(RoomServiceError):
    kind = "allocation_failure"


class UnauthorizedError(RoomServiceError):
    status_code = 401
    kind = "unauthorized"
