"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用可记录的假连接中心和脚本化翻译器替代外部依赖，
使单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("GEMINI_API_KEY", "test-fake-key")
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from app.services.dispatcher import FanOutDispatcher  # noqa: E402
from app.services.meeting_notes import MeetingNotesTrigger  # noqa: E402
from app.services.meeting_service import MeetingService  # noqa: E402
from app.services.reactions import ReactionLedger  # noqa: E402
from app.services.room_registry import RoomRegistry  # noqa: E402
from app.services.voice_directory import VoiceDirectory  # noqa: E402
from tests.fakes import RecordingHub, ScriptedTranslator  # noqa: E402


@pytest.fixture()
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture()
def translator() -> ScriptedTranslator:
    return ScriptedTranslator()


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry(message_limit=100)


@pytest.fixture()
def summarizer() -> MagicMock:
    """mock 的纪要生成器，``summarize`` 返回固定的 Markdown。"""
    mock = MagicMock()
    mock.summarize = AsyncMock(return_value="# Meeting Notes\n\n## Summary\n\nAll good.")
    return mock


@pytest.fixture()
def dispatcher(registry: RoomRegistry, hub: RecordingHub, translator: ScriptedTranslator) -> FanOutDispatcher:
    return FanOutDispatcher(registry, hub, translator)  # type: ignore[arg-type]


@pytest.fixture()
def notes(
    registry: RoomRegistry, hub: RecordingHub, translator: ScriptedTranslator, summarizer: MagicMock,
) -> MeetingNotesTrigger:
    return MeetingNotesTrigger(registry, hub, translator, summarizer, threshold=10)  # type: ignore[arg-type]


@pytest.fixture()
def transcriber() -> MagicMock:
    """mock 的录音转写器，默认识别结果为空。"""
    mock = MagicMock()
    mock.transcribe = AsyncMock(return_value="")
    return mock


@pytest.fixture()
def service(
    registry: RoomRegistry,
    hub: RecordingHub,
    dispatcher: FanOutDispatcher,
    notes: MeetingNotesTrigger,
    transcriber: MagicMock,
) -> MeetingService:
    return MeetingService(
        registry=registry,
        hub=hub,
        dispatcher=dispatcher,
        notes=notes,
        reactions=ReactionLedger(registry, hub),
        transcriber=transcriber,
        voices=VoiceDirectory({"alice": "en-US-JennyNeural"}),
        word_threshold=2,
    )
