"""
app.schemas.meeting
~~~~~~~~~~~~~~~~~~~

会议室相关的 Pydantic 模型。

- 房间内存储的规范消息 ``Message``（原文，不含任何译文）
- WebSocket 出站事件载荷（按接收者个性化）
- WebSocket 入站事件载荷
- REST 请求 / 响应数据
"""
from __future__ import annotations

from pydantic import BaseModel, Field


# ── 存储模型 ──────────────────────────────────────────────────────────

class Reactor(BaseModel):
    """对某条消息点过某个表情的参与者。"""

    user_id: str = Field(..., description="连接 ID")
    username: str = Field(..., description="显示名")


# 表情 → 点过该表情的参与者（按点击先后排列）
ReactionMap = dict[str, list[Reactor]]


class Message(BaseModel):
    """房间历史中的规范消息。``text`` 永远是发送者的原文。"""

    id: str = Field(..., description="全局唯一消息 ID")
    user_id: str = Field(..., description="发送者连接 ID（系统消息为 system）")
    username: str = Field(..., description="发送者显示名")
    text: str = Field(..., description="原文")
    language: str = Field(..., description="原文语言（参与者声明的语言标识）")
    language_display: str = Field(..., description="原文语言显示名")
    timestamp: str = Field(..., description="创建时间（ISO 格式）")
    is_final: bool = Field(default=True, description="已存储的消息恒为 True")
    is_system: bool = Field(default=False, description="是否为系统通知")
    reactions: ReactionMap = Field(default_factory=dict, description="表情回应")


class MeetingNotesRecord(BaseModel):
    """一次生成的会议纪要（英文原文）。"""

    text: str
    timestamp: str
    message_count: int
    is_auto_generated: bool
    generated_by_user_id: str | None = None
    generated_by_username: str | None = None


# ── 出站事件 ──────────────────────────────────────────────────────────

class ParticipantInfo(BaseModel):
    """名单中的一位参与者。"""

    id: str = Field(..., description="连接 ID")
    username: str
    language: str
    has_voice_clone: bool = False


class RoomStateEvent(BaseModel):
    """``room-state``：仅发给刚加入的连接。"""

    room: str
    connection_id: str
    users: list[ParticipantInfo]
    messages: list[Message]


class RosterEvent(BaseModel):
    """``user-joined`` / ``user-left``：完整名单 + 变更的那一位。"""

    users: list[ParticipantInfo]
    joined_user: ParticipantInfo | None = None
    left_user: ParticipantInfo | None = None


class MessageEvent(BaseModel):
    """``new-message`` / ``interim-message``：按接收者个性化后的消息。"""

    id: str | None = Field(default=None, description="最终消息 ID，临时消息为空")
    user_id: str
    username: str
    text: str = Field(..., description="发给该接收者的文本（原文或译文）")
    language: str
    language_display: str
    timestamp: str | None = None
    is_final: bool
    is_system: bool = False
    is_translated: bool = False
    original_text: str | None = None
    original_language: str | None = None
    original_language_display: str | None = None
    reactions: ReactionMap = Field(default_factory=dict)
    word_count: int | None = None


class SpeakingStartedEvent(BaseModel):
    user_id: str
    username: str
    word_count: int


class SpeakingStoppedEvent(BaseModel):
    user_id: str
    username: str


class ReactionUpdatedEvent(BaseModel):
    message_id: str
    reactions: ReactionMap


class MeetingNotesEvent(BaseModel):
    """``meeting-notes-updated``：按接收者纪要语言个性化。"""

    notes: str
    timestamp: str
    is_auto_generated: bool
    generated_by_user_id: str | None = None
    generated_by_username: str | None = None
    is_translated: bool = False


class PlayTtsEvent(BaseModel):
    message_id: str | None = None
    language: str
    voice_id: str
    is_cloned_voice: bool
    audio: str = Field(..., description="Base64 编码的 MP3 音频")


class ErrorEvent(BaseModel):
    message: str
    code: int = 400


# ── 入站事件 ──────────────────────────────────────────────────────────

class JoinRoomData(BaseModel):
    room: str = Field(..., min_length=1, max_length=100)
    username: str = Field(..., min_length=1, max_length=100)
    language: str = Field(default="en")
    voice_id: str | None = None


class RoomRef(BaseModel):
    room: str


class UpdateLanguageData(BaseModel):
    room: str
    language: str


class UpdateNotesLanguageData(BaseModel):
    room: str
    meeting_notes_language: str


class TranscriptData(BaseModel):
    text: str
    is_final: bool = False


class SendMessageData(BaseModel):
    room: str
    message: str = Field(..., min_length=1, max_length=2000)


class PushToTalkData(BaseModel):
    room: str
    audio: str = Field(..., description="Base64 编码的录音")
    mimetype: str = "audio/webm"


class AddReactionData(BaseModel):
    room: str
    message_id: str
    reaction: str = Field(..., min_length=1, max_length=32)


class RequestTtsData(BaseModel):
    room: str
    text: str = Field(..., min_length=1)
    language: str | None = None
    message_id: str | None = None
    speaker_id: str | None = None
    for_user_id: str | None = None


# ── REST ──────────────────────────────────────────────────────────────

class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room: str = Field(..., description="房间名")
    participant_count: int = Field(..., description="当前参与者数")
    message_count: int = Field(..., description="已存储的消息数")


class HistoryResponseData(BaseModel):
    room: str
    messages: list[Message]
    total: int


class TranslateTranscriptRequest(BaseModel):
    target_language: str = Field(..., min_length=1)


class TranslatedMessageData(BaseModel):
    message: Message
    text: str = Field(..., description="目标语言文本")
    is_translated: bool


class TranslateTranscriptData(BaseModel):
    room: str
    target_language: str
    messages: list[TranslatedMessageData]


class MeetingNotesRequest(BaseModel):
    requested_by: str | None = Field(default=None, description="发起者显示名")


class MeetingNotesData(BaseModel):
    room: str
    notes: str
    timestamp: str


class LanguageData(BaseModel):
    code: str
    short_code: str
    display_name: str
