from fastapi import Request

from room_service import RoomService


def get_room_service(request: Request) -> RoomService:
    """The service built in the application lifespan."""
    return request.app.state.room_service
