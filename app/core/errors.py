"""
app.core.errors
~~~~~~~~~~~~~~~

会议室领域异常。

- ``VendorError`` 及其子类：外部服务（翻译 / 纪要 / 转写 / 合成）的瞬时失败，
  由网关层捕获后降级处理，不会直接暴露给用户。
- 其余 ``MeetingError`` 子类：面向发起方的错误，WebSocket 层会把它们
  转换为一条只发给发起连接的 ``error`` 事件。
"""
from __future__ import annotations


class MeetingError(Exception):
    """会议室业务异常基类。"""

    #: 返回给客户端的错误码，REST 层据此映射 HTTP 状态码
    code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RoomNotFoundError(MeetingError):
    code = 404

    def __init__(self, room_name: str) -> None:
        super().__init__(f"房间不存在: {room_name}")
        self.room_name = room_name


class ParticipantNotFoundError(MeetingError):
    code = 404

    def __init__(self, room_name: str, connection_id: str) -> None:
        super().__init__(f"连接 {connection_id} 不在房间 {room_name} 中")
        self.room_name = room_name
        self.connection_id = connection_id


class MessageNotFoundError(MeetingError):
    code = 404

    def __init__(self, room_name: str, message_id: str) -> None:
        super().__init__(f"消息 {message_id} 不在房间 {room_name} 中")
        self.room_name = room_name
        self.message_id = message_id


class NoMessagesError(MeetingError):
    """房间内没有可用于生成纪要的消息。"""


class SummaryInProgressError(MeetingError):
    """同一房间已有一次手动纪要正在生成。"""

    code = 409


# ── 外部服务瞬时失败 ───────────────────────────────────────────────────

class VendorError(MeetingError):
    """外部服务调用失败（超时、非 2xx、响应格式异常）。"""

    code = 502


class TranslationError(VendorError):
    pass


class SummarizationError(VendorError):
    pass


class TranscriptionError(VendorError):
    pass


class SynthesisError(VendorError):
    pass
