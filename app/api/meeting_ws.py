"""
app.api.meeting_ws
~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 多语言会议室。

提供 ``/ws/meeting`` 端点。每个连接分配一个新的 ``connection_id``，
进出房间、语音转写、文字消息、表情、纪要、语音合成都通过同一条连接完成。

消息协议（双向 JSON 信封）::

    {"event": "send-message", "data": {"room": "R", "message": "Hello"}}

面向发起方的错误只回给本连接一条 ``error`` 事件，不会影响房间里的其他人。
"""
from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.errors import MeetingError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.schemas.meeting import (
    AddReactionData,
    ErrorEvent,
    JoinRoomData,
    PushToTalkData,
    RequestTtsData,
    RoomRef,
    SendMessageData,
    TranscriptData,
    UpdateLanguageData,
    UpdateNotesLanguageData,
)
from app.services.connection import ERROR, ConnectionHub
from app.services.meeting_service import MeetingService

logger = get_logger(__name__)

router: APIRouter = APIRouter()

_Handler = Callable[[MeetingService, str, dict[str, Any]], Awaitable[Any]]


def _parse(model: type[BaseModel], data: dict[str, Any]) -> Any:
    return model.model_validate(data)


async def _join(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.join(cid, _parse(JoinRoomData, data))


async def _leave(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.leave(cid, _parse(RoomRef, data).room)


async def _update_language(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(UpdateLanguageData, data)
    await service.update_language(cid, payload.room, payload.language)


async def _update_notes_language(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(UpdateNotesLanguageData, data)
    await service.update_notes_language(cid, payload.room, payload.meeting_notes_language)


async def _speech_started(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    service.speech_started(cid, _parse(RoomRef, data).room)


async def _transcript(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(TranscriptData, data)
    await service.transcript(cid, payload.text, payload.is_final)


async def _utterance_end(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.utterance_end(cid)


async def _muted(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.mute(cid, _parse(RoomRef, data).room)


async def _stop_stream(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.stop_stream(cid)


async def _push_to_talk(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(PushToTalkData, data)
    await service.push_to_talk(cid, payload.room, payload.audio, payload.mimetype)


async def _send_message(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(SendMessageData, data)
    await service.send_message(cid, payload.room, payload.message)


async def _add_reaction(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    payload = _parse(AddReactionData, data)
    await service.toggle_reaction(cid, payload.room, payload.message_id, payload.reaction)


async def _generate_notes(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.request_summary(cid, _parse(RoomRef, data).room)


async def _request_tts(service: MeetingService, cid: str, data: dict[str, Any]) -> None:
    await service.request_tts(cid, _parse(RequestTtsData, data))


HANDLERS: dict[str, _Handler] = {
    "join-room": _join,
    "leave-room": _leave,
    "update-language": _update_language,
    "update-meeting-notes-language": _update_notes_language,
    "speech-started": _speech_started,
    "transcript": _transcript,
    "utterance-end": _utterance_end,
    "user-muted": _muted,
    "stop-stream": _stop_stream,
    "push-to-talk": _push_to_talk,
    "send-message": _send_message,
    "add-reaction": _add_reaction,
    "generate-meeting-notes": _generate_notes,
    "request-tts": _request_tts,
}

# 受发送间隔限制的事件（语音流事件频率本来就高，不限流）
RATE_LIMITED_EVENTS: frozenset[str] = frozenset({"send-message", "push-to-talk"})


def decode_frame(raw: str) -> tuple[str, dict[str, Any]]:
    """解析入站 JSON 信封，返回 ``(event, data)``。

    Raises:
        MeetingError: 不是 JSON、缺少事件名或 data 不是对象。
    """
    try:
        frame = json.loads(raw)
    except ValueError as e:
        raise MeetingError("消息不是合法的 JSON") from e
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        raise MeetingError("消息缺少 event 字段")
    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise MeetingError("data 字段必须是对象")
    return frame["event"], data


async def handle_event(
    service: MeetingService, hub: ConnectionHub, connection_id: str, event: str, data: dict[str, Any],
) -> None:
    """执行一个入站事件，把面向发起方的错误转成一条 ``error`` 事件。"""
    handler = HANDLERS.get(event)
    if handler is None:
        await hub.send(connection_id, ERROR, ErrorEvent(message=f"未知事件: {event}"))
        return
    try:
        await handler(service, connection_id, data)
    except ValidationError as e:
        logger.info("入站事件参数错误 | event=%s | %s", event, e.errors(include_url=False))
        await hub.send(connection_id, ERROR, ErrorEvent(message=f"事件 {event} 参数错误", code=422))
    except MeetingError as e:
        logger.info("事件处理失败 | event=%s | %s", event, e.message)
        await hub.send(connection_id, ERROR, ErrorEvent(message=e.message, code=e.code))


@router.websocket("/ws/meeting")
async def websocket_meeting_endpoint(websocket: WebSocket) -> None:
    """WebSocket 会议室端点。

    接收与处理分成两个协程，中间用有界队列隔开：
    接收端按到达时间做限流判断，处理端按顺序执行事件。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = uuid.uuid4().hex
    token = request_id_ctx_var.set(f"ws-{connection_id[:8]}")

    try:
        service: MeetingService = websocket.app.state.meeting_service
        hub: ConnectionHub = websocket.app.state.connection_hub
        await hub.connect(connection_id, websocket)
        logger.info("连接建立 | conn=%s | 在线: %d", connection_id, hub.online_count)

        # 每个连接专用的限流器，限制文字消息的发送间隔
        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue(
            maxsize=settings.WS_QUEUE_SIZE,
        )

        async def receive_loop() -> None:
            try:
                while True:
                    raw: str = await websocket.receive_text()
                    try:
                        event, data = decode_frame(raw)
                    except MeetingError as e:
                        await hub.send(connection_id, ERROR, ErrorEvent(message=e.message))
                        continue

                    if event in RATE_LIMITED_EVENTS and not ws_limiter.is_allowed(connection_id):
                        await hub.send(
                            connection_id, ERROR, ErrorEvent(message="发送太快了，请稍后再试", code=429),
                        )
                        continue
                    try:
                        queue.put_nowait((event, data))
                    except asyncio.QueueFull:
                        await hub.send(
                            connection_id, ERROR, ErrorEvent(message="消息处理不过来，请稍后重试", code=503),
                        )
                        logger.warning("WS 队列已满，丢弃事件 | event=%s", event)
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s", e, exc_info=True)
            finally:
                await queue.put(None)  # 发送结束信号给处理协程

        async def process_loop() -> None:
            while True:
                item = await queue.get()
                if item is None:
                    break
                event, data = item
                try:
                    await handle_event(service, hub, connection_id, event, data)
                except Exception as e:
                    logger.error("WebSocket 处理异常 | event=%s | %s", event, e, exc_info=True)

        try:
            await asyncio.gather(receive_loop(), process_loop())
        finally:
            hub.disconnect(connection_id)
            ws_limiter.remove_client(connection_id)
            await service.disconnect(connection_id)
            logger.info("连接断开 | conn=%s | 在线: %d", connection_id, hub.online_count)

    finally:
        request_id_ctx_var.reset(token)
