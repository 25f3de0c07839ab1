"""
app.services.dispatcher
~~~~~~~~~~~~~~~~~~~~~~~

消息扇出分发器 —— 把一条规范消息变成发给每位参与者的个性化事件。

语音流式识别、按键说话和文字聊天共用同一条路径：

1. 发送者本人、以及归一化语言与原文相同的参与者 → 原文
2. 其余参与者按目标语言分组，每种语言只翻译一次，译文复用给同语言的所有人
3. 某种语言翻译失败只影响该组接收者（回退为原文，``is_translated=False``）

同一发送者的事件经 ``OrderedLanes`` 串行投递：同一轮的临时消息按产生顺序送达，
最终消息一定排在它们之后；不同发送者之间互不等待。
"""
from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from app.core.languages import display_name, same_language, short_code
from app.core.logging import get_logger
from app.schemas.meeting import Message, MessageEvent
from app.services.connection import ConnectionHub
from app.services.room import Participant
from app.services.room_registry import RoomRegistry
from app.services.translation import TranslationGateway

logger = get_logger(__name__)

NEW_MESSAGE = "new-message"
INTERIM_MESSAGE = "interim-message"


class OrderedLanes:
    """按键串行执行协程：同一个键上后提交的协程会等前一个结束后再开始。"""

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Task[None]] = {}

    def submit(self, key: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        previous = self._tails.get(key)
        task = asyncio.get_running_loop().create_task(self._run_after(previous, coro))
        self._tails[key] = task
        task.add_done_callback(lambda t: self._release(key, t))
        return task

    @staticmethod
    async def _run_after(previous: asyncio.Task[None] | None, coro: Coroutine[Any, Any, None]) -> None:
        if previous is not None:
            # 前一个任务的异常已由它自己记录，这里只等待它结束
            await asyncio.wait({previous})
        try:
            await coro
        except Exception as e:
            logger.error("分发任务异常: %s", e, exc_info=True)

    def _release(self, key: str, task: asyncio.Task[None]) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    async def drain(self, key: str | None = None) -> None:
        """等待指定键（或全部键）上已提交的任务执行完。"""
        if key is None:
            tails = list(self._tails.values())
        else:
            tail = self._tails.get(key)
            tails = [tail] if tail is not None else []
        if tails:
            await asyncio.wait(tails)


@dataclass(frozen=True)
class DispatchMetadata:
    """分发时附带的元数据。

    Attributes:
        sender_username: 发送者显示名。
        message: 最终消息对应的已存储消息（提供 ID、时间戳、表情、系统标记）。
        word_count: 临时消息的词数。
    """

    sender_username: str
    message: Message | None = None
    word_count: int | None = None


class FanOutDispatcher:
    """扇出分发器。

    Attributes:
        registry: 房间注册表（解析接收者与语言）。
        hub: 连接中心（实际发送）。
        translator: 翻译网关。
    """

    def __init__(
        self, registry: RoomRegistry, hub: ConnectionHub, translator: TranslationGateway,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.translator = translator
        self.lanes = OrderedLanes()

    def submit(
        self,
        room_name: str,
        sender_connection_id: str,
        text: str,
        source_language: str,
        is_final: bool,
        metadata: DispatchMetadata,
    ) -> asyncio.Task[None]:
        """在发送者的有序通道上排队一次分发，立即返回任务（不等待完成）。

        通道按 ``房间:发送者`` 区分，系统通知在不同房间之间互不等待。
        """
        return self.lanes.submit(
            f"{room_name}:{sender_connection_id}",
            self.dispatch(
                room_name, sender_connection_id, text, source_language, is_final, metadata,
            ),
        )

    async def dispatch(
        self,
        room_name: str,
        sender_connection_id: str,
        text: str,
        source_language: str,
        is_final: bool,
        metadata: DispatchMetadata,
    ) -> None:
        """立即执行一次分发，等所有语言组都送出后返回。"""
        room = self.registry.get(room_name)
        if room is None:
            logger.warning("分发目标房间不存在，丢弃 | room=%s", room_name)
            return

        recipients = room.participants_snapshot()
        if not recipients:
            return

        verbatim: list[Participant] = []
        by_language: dict[str, list[Participant]] = {}
        for recipient in recipients:
            if recipient.connection_id == sender_connection_id or same_language(
                recipient.language, source_language,
            ):
                verbatim.append(recipient)
            else:
                by_language.setdefault(short_code(recipient.language), []).append(recipient)

        event = NEW_MESSAGE if is_final else INTERIM_MESSAGE
        original = self._build_event(text, source_language, is_final, sender_connection_id, metadata)

        await asyncio.gather(
            self._send_all(verbatim, event, original),
            *(
                self._translate_and_send(group, target, event, original)
                for target, group in by_language.items()
            ),
        )
        logger.debug(
            "分发完成 | room=%s | event=%s | 原文 %d 人 | 翻译语言 %s",
            room_name, event, len(verbatim), list(by_language),
        )

    async def _translate_and_send(
        self, group: list[Participant], target: str, event: str, original: MessageEvent,
    ) -> None:
        try:
            translated = await self.translator.translate(original.text, original.language, target)
        except Exception as e:
            logger.warning("翻译异常，该语言组回退原文 | target=%s | %s", target, e)
            translated = original.text

        if translated == original.text:
            payload = original
        else:
            payload = original.model_copy(
                update={
                    "text": translated,
                    "is_translated": True,
                    "original_text": original.text,
                    "original_language": original.language,
                    "original_language_display": original.language_display,
                },
            )
        await self._send_all(group, event, payload)

    async def _send_all(self, group: list[Participant], event: str, payload: MessageEvent) -> None:
        await asyncio.gather(*(self.hub.send(p.connection_id, event, payload) for p in group))

    @staticmethod
    def _build_event(
        text: str,
        source_language: str,
        is_final: bool,
        sender_connection_id: str,
        metadata: DispatchMetadata,
    ) -> MessageEvent:
        message = metadata.message
        return MessageEvent(
            id=message.id if message else None,
            user_id=sender_connection_id,
            username=metadata.sender_username,
            text=text,
            language=source_language,
            language_display=display_name(source_language),
            timestamp=message.timestamp if message else None,
            is_final=is_final,
            is_system=message.is_system if message else False,
            reactions={k: list(v) for k, v in message.reactions.items()} if message else {},
            word_count=metadata.word_count,
        )
