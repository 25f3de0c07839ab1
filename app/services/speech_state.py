"""
app.services.speech_state
~~~~~~~~~~~~~~~~~~~~~~~~~

语音轮次状态机 —— 每个正在使用麦克风的连接一台。

状态只有 ``IDLE`` 和 ``SPEAKING`` 两种，配合单调递增的 ``turn_id``：

  IDLE ──speech_started──▶ SPEAKING ──utterance_end / abort──▶ IDLE

- 转写片段只在 ``SPEAKING`` 状态下累积
- 当前文本达到词数阈值时，本轮只触发一次「开始说话」
- ``utterance_end`` 只有在 ``SPEAKING`` 时才生效，重复的结束信号天然是无操作

状态机本身不做任何 IO，只返回转移结果，由 ``MeetingService`` 负责广播和分发。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.core.logging import get_logger

logger = get_logger(__name__)


class SpeechState(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class TranscriptUpdate:
    """一次转写片段处理后的结果。

    Attributes:
        turn_id: 所属轮次。
        text: 当前有效文本（已确认片段 + 最新临时片段）。
        word_count: ``text`` 的词数。
        speaking_started: 本次是否刚跨过词数阈值（每轮最多一次为 True）。
        should_dispatch: 是否达到阈值，应作为临时消息分发。
    """

    turn_id: int
    text: str
    word_count: int
    speaking_started: bool
    should_dispatch: bool


@dataclass(frozen=True)
class TurnEnd:
    """一轮说话结束。``final_text`` 为空表示本轮没有确认的文本，不生成消息。"""

    turn_id: int
    final_text: str


class UtteranceAccumulator:
    """单个连接的语音累积器。

    Attributes:
        connection_id: 说话者连接 ID。
        room_name: 说话者所在房间。
        word_threshold: 广播「开始说话」所需的最少词数。
    """

    def __init__(self, connection_id: str, room_name: str, word_threshold: int = 2) -> None:
        self.connection_id = connection_id
        self.room_name = room_name
        self.word_threshold = word_threshold
        self.state: SpeechState = SpeechState.IDLE
        self.turn_id: int = 0
        self._reset_turn()

    def _reset_turn(self) -> None:
        self.accumulated_final: str = ""
        self.current_partial: str = ""
        self.word_count: int = 0
        self.has_crossed_threshold: bool = False

    @property
    def is_speaking(self) -> bool:
        return self.state is SpeechState.SPEAKING

    def speech_started(self) -> bool:
        """开始新一轮。已在说话时忽略，返回是否发生了状态转移。"""
        if self.state is SpeechState.SPEAKING:
            return False
        self.state = SpeechState.SPEAKING
        self.turn_id += 1
        self._reset_turn()
        logger.debug("开始说话 | conn=%s | turn=%d", self.connection_id, self.turn_id)
        return True

    def on_transcript(self, text: str, is_final: bool) -> TranscriptUpdate | None:
        """处理一条转写片段；空片段或非说话状态下返回 None。"""
        if self.state is not SpeechState.SPEAKING or not text.strip():
            return None

        segment = text.strip()
        self.current_partial = segment
        if is_final:
            if not self.accumulated_final:
                self.accumulated_final = segment
            # 上游可能重复下发同一个确认片段；按去空白后的结尾判断，只是启发式，不保证去重完整
            elif not self.accumulated_final.endswith(segment):
                self.accumulated_final = f"{self.accumulated_final} {segment}"

        if is_final:
            current = self.accumulated_final.strip()
        else:
            current = f"{self.accumulated_final} {segment}".strip()

        self.word_count = len(current.split())
        reached = self.word_count >= self.word_threshold
        started = reached and not self.has_crossed_threshold
        if started:
            self.has_crossed_threshold = True

        return TranscriptUpdate(
            turn_id=self.turn_id,
            text=current,
            word_count=self.word_count,
            speaking_started=started,
            should_dispatch=reached,
        )

    def utterance_end(self) -> TurnEnd | None:
        """结束本轮。非说话状态下返回 None（重复的结束信号被忽略）。"""
        if self.state is not SpeechState.SPEAKING:
            return None
        # 先切换状态再读取文本，保证同一轮只会结束一次
        self.state = SpeechState.IDLE
        end = TurnEnd(turn_id=self.turn_id, final_text=self.accumulated_final.strip())
        self._reset_turn()
        logger.debug(
            "说话结束 | conn=%s | turn=%d | 文本长度=%d",
            self.connection_id, end.turn_id, len(end.final_text),
        )
        return end

    def abort(self) -> bool:
        """静音 / 断开时强制回到 IDLE 并丢弃累积内容，返回之前是否在说话。"""
        was_speaking = self.state is SpeechState.SPEAKING
        self.state = SpeechState.IDLE
        self._reset_turn()
        return was_speaking
