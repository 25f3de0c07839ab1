"""
app.services.meeting_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会议室业务服务层 —— 把 WebSocket 入站事件翻译成对各个组件的调用。

职责划分:
  - ``RoomRegistry``        → 房间与参与者
  - ``UtteranceAccumulator`` → 每个连接的语音轮次
  - ``FanOutDispatcher``    → 个性化扇出
  - ``MeetingNotesTrigger`` → 纪要计数与生成
  - ``ReactionLedger``      → 表情回应

对同一房间状态的修改都通过 ``room.actor.submit()`` 串行执行。
面向发起方的错误以 ``MeetingError`` 抛出，由 WebSocket 层转成 ``error`` 事件；
外部服务的瞬时失败在这里降级处理。
"""
from __future__ import annotations

import asyncio
import base64
import binascii

from app.core.errors import (
    MeetingError,
    ParticipantNotFoundError,
    RoomNotFoundError,
)
from app.core.languages import PIVOT_LANGUAGE
from app.core.logging import get_logger
from app.schemas.meeting import (
    JoinRoomData,
    Message,
    PlayTtsEvent,
    ReactionMap,
    RequestTtsData,
    RoomStateEvent,
    RosterEvent,
    SpeakingStartedEvent,
    SpeakingStoppedEvent,
)
from app.services.connection import ConnectionHub
from app.services.dispatcher import DispatchMetadata, FanOutDispatcher
from app.services.meeting_notes import MeetingNotesTrigger
from app.services.reactions import ReactionLedger
from app.services.room import (
    SYSTEM_USER_ID,
    SYSTEM_USERNAME,
    MeetingRoom,
    Participant,
    build_message,
)
from app.services.room_registry import RoomRegistry
from app.services.speech_state import UtteranceAccumulator
from app.services.transcription import DeepgramTranscriber
from app.services.voice_directory import VoiceDirectory
from app.tts.engine import default_voice_for, generate_audio_base64

logger = get_logger(__name__)

ROOM_STATE = "room-state"
USER_JOINED = "user-joined"
USER_LEFT = "user-left"
SPEAKING_STARTED = "user-speaking-started"
SPEAKING_STOPPED = "user-speaking-stopped"
PLAY_TTS = "play-tts"


class MeetingService:
    """会议室编排服务（进程内单例，由 lifespan 创建）。"""

    def __init__(
        self,
        registry: RoomRegistry,
        hub: ConnectionHub,
        dispatcher: FanOutDispatcher,
        notes: MeetingNotesTrigger,
        reactions: ReactionLedger,
        transcriber: DeepgramTranscriber,
        voices: VoiceDirectory,
        word_threshold: int = 2,
    ) -> None:
        self.registry = registry
        self.hub = hub
        self.dispatcher = dispatcher
        self.notes = notes
        self.reactions = reactions
        self.transcriber = transcriber
        self.voices = voices
        self.word_threshold = word_threshold
        self._accumulators: dict[str, UtteranceAccumulator] = {}

    # ── 加入 / 离开 ───────────────────────────────────────────────────

    async def join(self, connection_id: str, data: JoinRoomData) -> MeetingRoom:
        """加入房间：下发房间状态、广播名单、分发系统通知。"""
        voice_id = data.voice_id or await self.voices.resolve(data.username)
        participant = Participant(
            connection_id=connection_id,
            username=data.username,
            language=data.language or PIVOT_LANGUAGE,
            voice_id=voice_id,
        )

        room = self.registry.get_or_create(data.room)
        try:
            history, notice = await room.actor.submit(self._admit, room, participant)
        except RoomNotFoundError:
            # 排队期间房间被最后一位参与者清空销毁，换新房间重试一次
            room = self.registry.get_or_create(data.room)
            history, notice = await room.actor.submit(self._admit, room, participant)

        roster = room.roster()
        await self.hub.send(
            connection_id,
            ROOM_STATE,
            RoomStateEvent(
                room=room.name, connection_id=connection_id, users=roster, messages=history,
            ),
        )
        await self.hub.broadcast(
            list(room.participants),
            USER_JOINED,
            RosterEvent(users=roster, joined_user=participant.info()),
        )
        self.dispatcher.submit(
            room.name,
            SYSTEM_USER_ID,
            notice.text,
            notice.language,
            True,
            DispatchMetadata(sender_username=SYSTEM_USERNAME, message=notice),
        )
        return room

    def _admit(self, room: MeetingRoom, participant: Participant) -> tuple[list[Message], Message]:
        if self.registry.get(room.name) is not room:
            raise RoomNotFoundError(room.name)
        history = room.history()
        self.registry.join(room.name, participant)
        notice = build_message(
            SYSTEM_USER_ID,
            SYSTEM_USERNAME,
            f"{participant.username} has joined the room.",
            PIVOT_LANGUAGE,
            is_system=True,
        )
        room.append_message(notice)
        return history, notice

    async def leave(self, connection_id: str, room_name: str) -> Participant | None:
        """离开房间；不在房间里时为无操作。"""
        room = self.registry.get(room_name)
        if room is None:
            logger.warning("离开的房间不存在 | room=%s | conn=%s", room_name, connection_id)
            return None

        accumulator = self._accumulators.get(connection_id)
        if accumulator is not None and accumulator.room_name == room_name:
            del self._accumulators[connection_id]
            if accumulator.abort():
                await self._broadcast_stopped(room, connection_id)

        try:
            participant = await room.actor.submit(self.registry.leave, room_name, connection_id)
        except RoomNotFoundError:
            return None
        if participant is None:
            return None

        await self.hub.broadcast(
            list(room.participants),
            USER_LEFT,
            RosterEvent(users=room.roster(), left_user=participant.info()),
        )
        return participant

    async def disconnect(self, connection_id: str) -> None:
        """连接断开：对所在的每个房间执行离开，并丢弃其语音状态。"""
        for room_name in self.registry.rooms_of(connection_id):
            await self.leave(connection_id, room_name)
        self._accumulators.pop(connection_id, None)

    # ── 偏好 ──────────────────────────────────────────────────────────

    async def update_language(self, connection_id: str, room_name: str, language: str) -> None:
        room = self.registry.require(room_name)
        participant = await room.actor.submit(
            self._set_preference, room, connection_id, "language", language,
        )
        logger.info("语言已更新 | room=%s | user=%s | lang=%s", room_name, participant.username, language)

        # 语言变了，正在进行的语音轮次作废
        accumulator = self._accumulators.pop(connection_id, None)
        if accumulator is not None and accumulator.abort():
            await self._broadcast_stopped(room, connection_id)

    async def update_notes_language(
        self, connection_id: str, room_name: str, language: str,
    ) -> None:
        room = self.registry.require(room_name)
        participant = await room.actor.submit(
            self._set_preference, room, connection_id, "meeting_notes_language", language,
        )
        logger.info(
            "纪要语言已更新 | room=%s | user=%s | lang=%s", room_name, participant.username, language,
        )

    @staticmethod
    def _set_preference(
        room: MeetingRoom, connection_id: str, field: str, value: str,
    ) -> Participant:
        participant = room.participants.get(connection_id)
        if participant is None:
            raise ParticipantNotFoundError(room.name, connection_id)
        setattr(participant, field, value)
        return participant

    # ── 语音流 ────────────────────────────────────────────────────────

    def _require_participant(self, connection_id: str, room_name: str) -> tuple[MeetingRoom, Participant]:
        room = self.registry.require(room_name)
        participant = room.participants.get(connection_id)
        if participant is None:
            raise ParticipantNotFoundError(room_name, connection_id)
        return room, participant

    def speech_started(self, connection_id: str, room_name: str) -> bool:
        """上游检测到开始说话。房间或参与者不存在时抛错给发起方。"""
        self._require_participant(connection_id, room_name)
        accumulator = self._accumulators.get(connection_id)
        if accumulator is None or accumulator.room_name != room_name:
            accumulator = UtteranceAccumulator(connection_id, room_name, self.word_threshold)
            self._accumulators[connection_id] = accumulator
        return accumulator.speech_started()

    async def transcript(self, connection_id: str, text: str, is_final: bool) -> None:
        """处理一条转写片段：必要时广播开始说话，并作为临时消息分发。"""
        accumulator = self._accumulators.get(connection_id)
        if accumulator is None:
            return
        update = accumulator.on_transcript(text, is_final)
        if update is None:
            return

        room = self.registry.get(accumulator.room_name)
        participant = room.participants.get(connection_id) if room else None
        if room is None or participant is None:
            logger.warning("转写所属的房间已不存在，丢弃 | conn=%s", connection_id)
            self._accumulators.pop(connection_id, None)
            return

        if update.speaking_started:
            await self.hub.broadcast(
                list(room.participants),
                SPEAKING_STARTED,
                SpeakingStartedEvent(
                    user_id=connection_id,
                    username=participant.username,
                    word_count=update.word_count,
                ),
            )
        if update.should_dispatch:
            self.dispatcher.submit(
                room.name,
                connection_id,
                update.text,
                participant.language,
                False,
                DispatchMetadata(sender_username=participant.username, word_count=update.word_count),
            )

    async def utterance_end(self, connection_id: str) -> Message | None:
        """结束当前轮次；有确认文本时生成一条最终消息。重复的结束信号被忽略。"""
        accumulator = self._accumulators.get(connection_id)
        if accumulator is None:
            return None
        end = accumulator.utterance_end()
        if end is None:
            return None

        message = None
        if end.final_text:
            try:
                message = await self._finalize(accumulator.room_name, connection_id, end.final_text)
            except MeetingError as e:
                logger.warning("语音消息无法入库，丢弃 | turn=%d | %s", end.turn_id, e.message)

        room = self.registry.get(accumulator.room_name)
        if room is not None:
            await self._broadcast_stopped(room, connection_id)
        return message

    async def mute(self, connection_id: str, room_name: str) -> None:
        """静音：丢弃进行中的轮次，之前在说话时广播停止。"""
        accumulator = self._accumulators.get(connection_id)
        if accumulator is None or not accumulator.abort():
            return
        room = self.registry.get(room_name)
        if room is not None:
            await self._broadcast_stopped(room, connection_id)

    async def stop_stream(self, connection_id: str) -> None:
        """结束语音流：丢弃语音状态，并总是广播一次停止说话。"""
        accumulator = self._accumulators.pop(connection_id, None)
        if accumulator is None:
            return
        accumulator.abort()
        room = self.registry.get(accumulator.room_name)
        if room is not None:
            await self._broadcast_stopped(room, connection_id)

    async def _broadcast_stopped(self, room: MeetingRoom, connection_id: str) -> None:
        participant = room.participants.get(connection_id)
        await self.hub.broadcast(
            list(room.participants),
            SPEAKING_STOPPED,
            SpeakingStoppedEvent(
                user_id=connection_id,
                username=participant.username if participant else "",
            ),
        )

    # ── 最终消息 ──────────────────────────────────────────────────────

    async def send_message(self, connection_id: str, room_name: str, text: str) -> Message | None:
        """文字消息。"""
        self._require_participant(connection_id, room_name)
        if not text.strip():
            return None
        return await self._finalize(room_name, connection_id, text.strip())

    async def push_to_talk(
        self, connection_id: str, room_name: str, audio_b64: str, mimetype: str = "audio/webm",
    ) -> Message | None:
        """按键说话：转写录音后按文字消息处理。转写为空时无操作。"""
        _, participant = self._require_participant(connection_id, room_name)
        try:
            audio = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MeetingError("录音数据不是合法的 Base64") from e
        if not audio:
            return None

        transcript = await self.transcriber.transcribe(audio, participant.language, mimetype)
        if not transcript:
            logger.info("按键说话没有识别出文本 | room=%s | user=%s", room_name, participant.username)
            return None
        return await self._finalize(room_name, connection_id, transcript)

    async def _finalize(self, room_name: str, connection_id: str, text: str) -> Message:
        """入库、计数、排队最终分发；到达阈值时在后台生成纪要。"""
        room = self.registry.require(room_name)
        message, should_summarize = await room.actor.submit(
            self._store, room, connection_id, text,
        )
        self.dispatcher.submit(
            room_name,
            connection_id,
            message.text,
            message.language,
            True,
            DispatchMetadata(sender_username=message.username, message=message),
        )
        if should_summarize:
            self.notes.schedule_auto(room_name)
        return message

    def _store(self, room: MeetingRoom, connection_id: str, text: str) -> tuple[Message, bool]:
        participant = room.participants.get(connection_id)
        if participant is None:
            raise ParticipantNotFoundError(room.name, connection_id)
        message = build_message(connection_id, participant.username, text, participant.language)
        evicted = room.append_message(message)
        if evicted is not None:
            logger.debug("历史已满，淘汰最旧消息 | room=%s | msg=%s", room.name, evicted.id)
        return message, self.notes.record_message(room)

    # ── 表情 / 纪要 / 语音合成 ────────────────────────────────────────

    async def toggle_reaction(
        self, connection_id: str, room_name: str, message_id: str, emoji: str,
    ) -> ReactionMap | None:
        return await self.reactions.toggle_reaction(room_name, message_id, connection_id, emoji)

    async def request_summary(self, connection_id: str, room_name: str) -> asyncio.Task[None]:
        """手动生成纪要，在后台执行，不阻塞本连接后续事件的处理。"""
        self._require_participant(connection_id, room_name)
        return self.notes.schedule_manual(room_name, requester_id=connection_id)

    async def request_tts(self, connection_id: str, data: RequestTtsData) -> bool:
        """合成语音并下发 ``play-tts``；合成失败时静默跳过，返回是否已下发。"""
        room, requester = self._require_participant(connection_id, data.room)
        if data.for_user_id and data.for_user_id not in room.participants:
            logger.warning(
                "语音接收者不在房间内，跳过 | room=%s | target=%s", data.room, data.for_user_id,
            )
            return False
        speaker = room.participants.get(data.speaker_id) if data.speaker_id else None

        voice_id = speaker.voice_id if speaker else None
        language = data.language or (speaker.language if speaker else requester.language)
        audio = await generate_audio_base64(data.text, language, voice_id)
        if not audio:
            return False

        event = PlayTtsEvent(
            message_id=data.message_id,
            language=language,
            voice_id=voice_id or default_voice_for(language),
            is_cloned_voice=bool(voice_id),
            audio=audio,
        )
        if data.for_user_id:
            await self.hub.send(data.for_user_id, PLAY_TTS, event)
        else:
            await self.hub.broadcast(list(room.participants), PLAY_TTS, event)
        return True
