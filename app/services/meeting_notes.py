"""
app.services.meeting_notes
~~~~~~~~~~~~~~~~~~~~~~~~~~

会议纪要触发器 —— 按消息数自动生成纪要，也支持手动触发。

- 每条最终消息（系统通知除外）使房间计数 +1，到达阈值时清零并在后台生成
- 手动触发不看计数，但同一房间同时只允许一个手动请求
- 生成结果按每位参与者的纪要语言翻译后单独下发；``en`` / ``multi`` 直接收原文

后台生成失败只记录日志并跳过本轮，不会影响消息分发。
"""
from __future__ import annotations

import asyncio

from app.core.errors import MeetingError, NoMessagesError, SummaryInProgressError, VendorError
from app.core.languages import PIVOT_LANGUAGE, short_code
from app.core.logging import get_logger
from app.llm.summarizer import MeetingNotesSummarizer
from app.prompts.meeting_notes import build_meeting_notes_prompt
from app.schemas.meeting import ErrorEvent, MeetingNotesEvent, MeetingNotesRecord
from app.services.connection import ERROR, ConnectionHub
from app.services.room import MeetingRoom, Participant, utc_now_iso
from app.services.room_registry import RoomRegistry
from app.services.translation import TranslationGateway

logger = get_logger(__name__)

MEETING_NOTES_UPDATED = "meeting-notes-updated"


class MeetingNotesTrigger:
    """会议纪要服务。

    Attributes:
        threshold: 自动生成所需的消息数。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        hub: ConnectionHub,
        translator: TranslationGateway,
        summarizer: MeetingNotesSummarizer,
        threshold: int = 10,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.translator = translator
        self.summarizer = summarizer
        self.threshold = threshold
        self._background: set[asyncio.Task[None]] = set()
        self._manual_in_flight: set[str] = set()

    # ── 计数 ──────────────────────────────────────────────────────────

    def record_message(self, room: MeetingRoom) -> bool:
        """记录一条最终消息，返回是否到达阈值（到达时计数清零）。

        必须在房间的 actor 内调用，与消息入库处于同一个工作单元。
        """
        room.messages_since_last_summary += 1
        logger.debug(
            "纪要计数 %d/%d | room=%s",
            room.messages_since_last_summary, self.threshold, room.name,
        )
        if room.messages_since_last_summary >= self.threshold:
            room.messages_since_last_summary = 0
            return True
        return False

    def schedule_auto(self, room_name: str) -> asyncio.Task[None]:
        """在后台生成一次自动纪要，立即返回。"""
        task = asyncio.get_running_loop().create_task(
            self._auto_generate(room_name), name=f"meeting-notes:{room_name}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _auto_generate(self, room_name: str) -> None:
        logger.info("消息数达到 %d，自动生成纪要 | room=%s", self.threshold, room_name)
        try:
            await self._generate(room_name, is_auto=True)
        except (VendorError, NoMessagesError) as e:
            logger.warning("自动纪要跳过本轮 | room=%s | %s", room_name, e.message)
        except Exception as e:
            logger.error("自动纪要异常 | room=%s | %s", room_name, e, exc_info=True)

    # ── 手动触发 ──────────────────────────────────────────────────────

    async def generate_manual(
        self, room_name: str, requester_id: str | None = None, requester_name: str | None = None,
    ) -> MeetingNotesRecord:
        """手动生成纪要。

        Raises:
            RoomNotFoundError: 房间不存在。
            NoMessagesError: 房间里没有可总结的消息。
            SummaryInProgressError: 该房间已有手动纪要在生成中。
            SummarizationError: LLM 调用失败。
        """
        self._claim_manual(room_name)
        try:
            return await self._generate(
                room_name, is_auto=False, requester_id=requester_id, requester_name=requester_name,
            )
        finally:
            self._manual_in_flight.discard(room_name)

    def schedule_manual(
        self, room_name: str, requester_id: str | None = None, requester_name: str | None = None,
    ) -> asyncio.Task[None]:
        """手动触发并在后台生成，立即返回。

        前置检查同步完成，失败时直接抛给调用方；
        生成阶段的错误以 ``error`` 事件回给发起者，LLM 失败只记录日志。
        """
        self._claim_manual(room_name)
        task = asyncio.get_running_loop().create_task(
            self._manual_generate(room_name, requester_id, requester_name),
            name=f"meeting-notes-manual:{room_name}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _claim_manual(self, room_name: str) -> None:
        room = self.registry.require(room_name)
        if room_name in self._manual_in_flight:
            raise SummaryInProgressError(f"房间 {room_name} 的会议纪要正在生成中")
        if not room.conversation():
            raise NoMessagesError(f"房间 {room_name} 没有可用于生成纪要的消息")
        self._manual_in_flight.add(room_name)

    async def _manual_generate(
        self, room_name: str, requester_id: str | None, requester_name: str | None,
    ) -> None:
        try:
            await self._generate(
                room_name, is_auto=False, requester_id=requester_id, requester_name=requester_name,
            )
        except VendorError as e:
            logger.warning("手动纪要生成失败 | room=%s | %s", room_name, e.message)
        except MeetingError as e:
            logger.info("手动纪要未生成 | room=%s | %s", room_name, e.message)
            if requester_id:
                await self.hub.send(requester_id, ERROR, ErrorEvent(message=e.message, code=e.code))
        except Exception as e:
            logger.error("手动纪要异常 | room=%s | %s", room_name, e, exc_info=True)
        finally:
            self._manual_in_flight.discard(room_name)

    def is_generating(self, room_name: str) -> bool:
        return room_name in self._manual_in_flight

    # ── 生成与下发 ────────────────────────────────────────────────────

    async def _generate(
        self,
        room_name: str,
        is_auto: bool,
        requester_id: str | None = None,
        requester_name: str | None = None,
    ) -> MeetingNotesRecord:
        room = self.registry.require(room_name)
        messages = room.history()
        prompt = build_meeting_notes_prompt(
            room_name, [p.username for p in room.participants_snapshot()], messages,
        )
        if prompt is None:
            raise NoMessagesError(f"房间 {room_name} 没有可用于生成纪要的消息")

        if requester_id and not requester_name:
            requester = room.participants.get(requester_id)
            requester_name = requester.username if requester else "Unknown User"

        notes = await self.summarizer.summarize(prompt.system_prompt, prompt.user_prompt)
        record = MeetingNotesRecord(
            text=notes,
            timestamp=utc_now_iso(),
            message_count=len(messages),
            is_auto_generated=is_auto,
            generated_by_user_id=None if is_auto else requester_id,
            generated_by_username=None if is_auto else requester_name,
        )

        # 生成期间房间可能已被销毁，此时 submit 抛 RoomNotFoundError
        room = self.registry.require(room_name)
        await room.actor.submit(room.meeting_notes.append, record)
        logger.info(
            "会议纪要已生成 | room=%s | auto=%s | 消息数=%d | 长度=%d",
            room_name, is_auto, record.message_count, len(notes),
        )

        await self.deliver(room, record)
        return record

    async def deliver(self, room: MeetingRoom, record: MeetingNotesRecord) -> None:
        """按纪要语言分组，每种语言翻译一次，再逐个下发。"""
        groups: dict[str, list[Participant]] = {}
        for participant in room.participants_snapshot():
            groups.setdefault(short_code(participant.notes_language), []).append(participant)

        original = MeetingNotesEvent(
            notes=record.text,
            timestamp=record.timestamp,
            is_auto_generated=record.is_auto_generated,
            generated_by_user_id=record.generated_by_user_id,
            generated_by_username=record.generated_by_username,
            is_translated=False,
        )
        await asyncio.gather(
            *(self._deliver_group(group, target, original) for target, group in groups.items()),
        )

    async def _deliver_group(
        self, group: list[Participant], target: str, original: MeetingNotesEvent,
    ) -> None:
        payload = original
        if target != PIVOT_LANGUAGE:
            try:
                translated = await self.translator.translate_markdown(original.notes, target)
            except Exception as e:
                logger.warning("纪要翻译异常，回退原文 | target=%s | %s", target, e)
                translated = original.notes
            if translated != original.notes:
                payload = original.model_copy(update={"notes": translated, "is_translated": True})

        await asyncio.gather(
            *(self.hub.send(p.connection_id, MEETING_NOTES_UPDATED, payload) for p in group),
        )

    async def wait_idle(self) -> None:
        """等待所有后台纪要任务结束（用于测试和关闭）。"""
        while self._background:
            await asyncio.wait(set(self._background))
