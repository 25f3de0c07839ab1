from fastapi import Request

from app.services.meeting_notes import MeetingNotesTrigger
from app.services.room_registry import RoomRegistry
from app.services.translation import TranslationGateway


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.room_registry


def get_translator(request: Request) -> TranslationGateway:
    return request.app.state.translator


def get_meeting_notes(request: Request) -> MeetingNotesTrigger:
    return request.app.state.meeting_notes
