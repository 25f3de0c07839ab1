"""
app.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~

会议室 REST 接口 —— 房间查询、历史回看、整段译文、手动纪要、语言查询。

REST 接口只读取或触发已有房间，从不创建房间。

端点:
  - ``GET  /rooms``                                → 活跃房间列表
  - ``GET  /rooms/{room}``                         → 房间详情（不存在时 404）
  - ``GET  /rooms/{room}/history``                 → 历史消息（分页）
  - ``POST /rooms/{room}/translate-transcript``    → 把历史翻译成一种语言
  - ``POST /rooms/{room}/meeting-notes``           → 手动生成会议纪要
  - ``GET  /languages/{code}``                     → 语言标识归一化
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_meeting_notes, get_registry, get_translator
from app.core.languages import canonicalize
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.meeting import (
    HistoryResponseData,
    LanguageData,
    MeetingNotesData,
    MeetingNotesRequest,
    Message,
    RoomInfoData,
    TranslatedMessageData,
    TranslateTranscriptData,
    TranslateTranscriptRequest,
)
from app.services.meeting_notes import MeetingNotesTrigger
from app.services.room_registry import RoomRegistry
from app.services.translation import TranslationGateway

router: APIRouter = APIRouter()


# ── 房间查询 ──────────────────────────────────────────────────────────


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, registry: RoomRegistry = Depends(get_registry)):
    """返回所有活跃会议室的摘要。"""
    return ApiResponse.ok(data=registry.list_rooms())


@router.get("/rooms/{room}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("10/second")
async def room_info(request: Request, room: str, registry: RoomRegistry = Depends(get_registry)):
    """返回指定会议室的摘要；房间不存在时返回 404。"""
    return ApiResponse.ok(data=registry.require(room).info())


@router.get(
    "/rooms/{room}/history",
    summary="获取历史消息",
    response_model=ApiResponse[HistoryResponseData],
)
@limiter.limit("10/second")
async def get_history(
    request: Request,
    room: str,
    skip: int = Query(0, ge=0, description="跳过条数（分页偏移）"),
    limit: int = Query(100, ge=1, le=500, description="每页最大条数"),
    registry: RoomRegistry = Depends(get_registry),
):
    """获取指定会议室的原文历史（按时间正序）。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        room: 房间名。
        skip: 跳过条数（分页偏移）。
        limit: 每页最大条数（1-500）。
    """
    messages = registry.require(room).history()
    return ApiResponse.ok(
        data=HistoryResponseData(
            room=room,
            messages=messages[skip:skip + limit],
            total=len(messages),
        ),
    )


# ── 翻译与纪要 ────────────────────────────────────────────────────────

@router.post(
    "/rooms/{room}/translate-transcript",
    summary="把历史翻译成指定语言",
    response_model=ApiResponse[TranslateTranscriptData],
)
@limiter.limit("2/second")
async def translate_transcript(
    request: Request,
    room: str,
    body: TranslateTranscriptRequest,
    registry: RoomRegistry = Depends(get_registry),
    translator: TranslationGateway = Depends(get_translator),
):
    """逐条翻译房间历史。单条翻译失败时该条回退为原文。"""
    messages = registry.require(room).history()

    async def _translate(message: Message) -> TranslatedMessageData:
        text = await translator.translate(message.text, message.language, body.target_language)
        return TranslatedMessageData(message=message, text=text, is_translated=text != message.text)

    translated = await asyncio.gather(*(_translate(m) for m in messages))
    return ApiResponse.ok(
        data=TranslateTranscriptData(
            room=room, target_language=body.target_language, messages=list(translated),
        ),
    )


@router.post(
    "/rooms/{room}/meeting-notes",
    summary="手动生成会议纪要",
    response_model=ApiResponse[MeetingNotesData],
)
@limiter.limit("1/second")
async def generate_meeting_notes(
    request: Request,
    room: str,
    body: MeetingNotesRequest | None = None,
    notes: MeetingNotesTrigger = Depends(get_meeting_notes),
):
    """生成会议纪要，同时推送给房间内所有参与者。

    同一房间已有纪要在生成时返回 409；没有可用消息时返回 400。
    """
    record = await notes.generate_manual(
        room, requester_name=body.requested_by if body else None,
    )
    return ApiResponse.ok(data=MeetingNotesData(room=room, notes=record.text, timestamp=record.timestamp))


# ── 语言 ──────────────────────────────────────────────────────────────

@router.get("/languages/{code}", summary="语言标识归一化", response_model=ApiResponse[LanguageData])
@limiter.limit("20/second")
async def language_info(request: Request, code: str):
    """返回语言标识对应的短码和显示名。未知标识原样返回。"""
    info = canonicalize(code)
    return ApiResponse.ok(
        data=LanguageData(code=code, short_code=info.short_code, display_name=info.display_name),
    )
