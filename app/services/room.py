"""
app.services.room
~~~~~~~~~~~~~~~~~

会议室领域模型 —— 封装一个房间的参与者、消息历史和纪要计数。

每个 ``MeetingRoom`` 拥有独立的串行执行器（``RoomActor``），
房间状态的所有修改都经由它完成，房间之间互不干扰。
"""
from __future__ import annotations

import secrets
import time
from collections import deque
from datetime import datetime, timezone

from app.core.languages import display_name
from app.schemas.meeting import (
    MeetingNotesRecord,
    Message,
    ParticipantInfo,
    RoomInfoData,
)
from app.services.room_actor import RoomActor

SYSTEM_USER_ID: str = "system"
SYSTEM_USERNAME: str = "System"


def new_message_id() -> str:
    """基于毫秒时间戳 + 随机后缀生成消息 ID（大致按时间递增，不保证严格有序）。"""
    return f"{int(time.time() * 1000):x}{secrets.token_hex(4)}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_message(
    user_id: str,
    username: str,
    text: str,
    language: str,
    *,
    is_system: bool = False,
) -> Message:
    """构造一条待入库的规范消息（原文，空表情表）。"""
    return Message(
        id=new_message_id(),
        user_id=user_id,
        username=username,
        text=text,
        language=language,
        language_display=display_name(language),
        timestamp=utc_now_iso(),
        is_final=True,
        is_system=is_system,
        reactions={},
    )


class Participant:
    """房间内的一个连接。

    Attributes:
        connection_id: 连接 ID，断线重连后会变化。
        username: 显示名。
        language: 对话语言偏好（可为 ``multi``）。
        voice_id: 可选的语音合成声线标识。
        meeting_notes_language: 会议纪要语言偏好，为空时沿用 ``language``。
    """

    def __init__(
        self,
        connection_id: str,
        username: str,
        language: str,
        voice_id: str | None = None,
        meeting_notes_language: str | None = None,
    ) -> None:
        self.connection_id = connection_id
        self.username = username
        self.language = language
        self.voice_id = voice_id
        self.meeting_notes_language = meeting_notes_language

    @property
    def notes_language(self) -> str:
        return self.meeting_notes_language or self.language or "en"

    def info(self) -> ParticipantInfo:
        return ParticipantInfo(
            id=self.connection_id,
            username=self.username,
            language=self.language,
            has_voice_clone=bool(self.voice_id),
        )

    def __repr__(self) -> str:
        return f"Participant({self.connection_id!r}, {self.username!r}, {self.language!r})"


class MeetingRoom:
    """一个会议室实体。

    Attributes:
        name: 房间名（路由键）。
        participants: 连接 ID → 参与者。
        messages: 最近的规范消息，超出上限时淘汰最旧的一条。
        messages_since_last_summary: 距上次生成纪要以来的消息数。
        meeting_notes: 已生成的纪要记录。
        actor: 本房间的串行执行器。
    """

    def __init__(self, name: str, message_limit: int = 100) -> None:
        self.name = name
        self.message_limit = message_limit
        self.participants: dict[str, Participant] = {}
        self.messages: deque[Message] = deque()
        self.messages_since_last_summary: int = 0
        self.meeting_notes: list[MeetingNotesRecord] = []
        self.actor = RoomActor(name)

    # ── 参与者 ────────────────────────────────────────────────────────

    def participants_snapshot(self) -> list[Participant]:
        """当前参与者的快照列表，之后的加入 / 离开不会反映到返回值上。"""
        return list(self.participants.values())

    def roster(self) -> list[ParticipantInfo]:
        return [p.info() for p in self.participants.values()]

    @property
    def is_empty(self) -> bool:
        return not self.participants

    # ── 消息 ──────────────────────────────────────────────────────────

    def append_message(self, message: Message) -> Message | None:
        """追加一条消息，返回因超出上限被淘汰的最旧消息（没有则为 None）。"""
        self.messages.append(message)
        if len(self.messages) > self.message_limit:
            return self.messages.popleft()
        return None

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def history(self) -> list[Message]:
        return list(self.messages)

    def conversation(self) -> list[Message]:
        """除系统通知外的消息，用于生成纪要。"""
        return [m for m in self.messages if not m.is_system]

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room=self.name,
            participant_count=len(self.participants),
            message_count=len(self.messages),
        )
