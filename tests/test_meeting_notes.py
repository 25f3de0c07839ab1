"""
tests.test_meeting_notes
~~~~~~~~~~~~~~~~~~~~~~~~

MeetingNotesTrigger 单元测试。LLM 调用全部 mock。
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import NoMessagesError, SummarizationError, SummaryInProgressError
from app.services.meeting_notes import MEETING_NOTES_UPDATED, MeetingNotesTrigger
from app.services.room import Participant, build_message
from app.services.room_registry import RoomRegistry
from tests.fakes import RecordingHub, ScriptedTranslator


@pytest.fixture()
def room(registry: RoomRegistry):
    room = registry.join("R", Participant("c-alice", "Alice", "en"))
    registry.join("R", Participant("c-bob", "Bob", "fr"))
    room.append_message(build_message("c-alice", "Alice", "Let's review the budget.", "en"))
    room.append_message(build_message("c-bob", "Bob", "D'accord.", "fr"))
    return room


class TestCounter:

    def test_threshold_fires_exactly_once_and_resets(self, notes: MeetingNotesTrigger, room) -> None:
        """第 10 条触发一次并清零；第 11 条不会再触发。"""
        fired = [notes.record_message(room) for _ in range(10)]

        assert fired == [False] * 9 + [True]
        assert room.messages_since_last_summary == 0
        assert notes.record_message(room) is False
        assert room.messages_since_last_summary == 1


class TestGeneration:

    @pytest.mark.asyncio
    async def test_auto_generation_delivers_per_language(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub,
        translator: ScriptedTranslator, summarizer: MagicMock,
    ) -> None:
        notes.schedule_auto("R")
        await notes.wait_idle()

        summarizer.summarize.assert_awaited_once()
        system_prompt, user_prompt = summarizer.summarize.call_args[0]
        assert "Room: R" in system_prompt
        assert "Alice: Let's review the budget." in user_prompt

        [to_alice] = hub.events("c-alice", MEETING_NOTES_UPDATED)
        [to_bob] = hub.events("c-bob", MEETING_NOTES_UPDATED)
        assert to_alice.is_translated is False
        assert to_alice.notes.startswith("# Meeting Notes")
        assert to_bob.is_translated is True
        assert to_bob.notes.startswith("[fr]")
        assert to_bob.is_auto_generated is True
        assert room.meeting_notes[-1].is_auto_generated is True

    @pytest.mark.asyncio
    async def test_notes_language_overrides_conversation_language(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        room.participants["c-bob"].meeting_notes_language = "multi"
        room.participants["c-alice"].meeting_notes_language = "de"

        await notes.generate_manual("R", requester_id="c-alice")

        assert hub.events("c-bob", MEETING_NOTES_UPDATED)[0].is_translated is False
        assert hub.events("c-alice", MEETING_NOTES_UPDATED)[0].notes.startswith("[de]")
        assert [call[2] for call in translator.calls] == ["de"]

    @pytest.mark.asyncio
    async def test_manual_records_generator_identity(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub,
    ) -> None:
        record = await notes.generate_manual("R", requester_id="c-bob")

        assert record.is_auto_generated is False
        assert record.generated_by_username == "Bob"
        assert hub.events("c-alice", MEETING_NOTES_UPDATED)[0].generated_by_user_id == "c-bob"

    @pytest.mark.asyncio
    async def test_manual_without_messages_raises(
        self, notes: MeetingNotesTrigger, registry: RoomRegistry,
    ) -> None:
        room = registry.join("Empty", Participant("c-x", "X", "en"))
        room.append_message(build_message("system", "System", "X has joined the room.", "en", is_system=True))

        with pytest.raises(NoMessagesError):
            await notes.generate_manual("Empty", requester_id="c-x")

    @pytest.mark.asyncio
    async def test_concurrent_manual_trigger_is_rejected(
        self, notes: MeetingNotesTrigger, room, summarizer: MagicMock,
    ) -> None:
        release = asyncio.Event()

        async def slow_summary(system_prompt: str, user_prompt: str) -> str:
            await release.wait()
            return "# Notes"

        summarizer.summarize = AsyncMock(side_effect=slow_summary)
        first = asyncio.create_task(notes.generate_manual("R", requester_id="c-alice"))
        await asyncio.sleep(0)

        with pytest.raises(SummaryInProgressError):
            await notes.generate_manual("R", requester_id="c-bob")

        release.set()
        await first
        assert not notes.is_generating("R")
        summarizer.summarize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auto_failure_skips_cycle(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub, summarizer: MagicMock,
    ) -> None:
        summarizer.summarize = AsyncMock(side_effect=SummarizationError("timeout"))

        notes.schedule_auto("R")
        await notes.wait_idle()

        assert hub.events("c-alice", MEETING_NOTES_UPDATED) == []
        assert room.meeting_notes == []

    @pytest.mark.asyncio
    async def test_scheduled_manual_runs_in_background(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub, summarizer: MagicMock,
    ) -> None:
        release = asyncio.Event()

        async def slow_summary(system_prompt: str, user_prompt: str) -> str:
            await release.wait()
            return "# Notes"

        summarizer.summarize = AsyncMock(side_effect=slow_summary)
        task = notes.schedule_manual("R", requester_id="c-alice")

        with pytest.raises(SummaryInProgressError):
            notes.schedule_manual("R", requester_id="c-bob")

        release.set()
        await task
        assert hub.events("c-bob", MEETING_NOTES_UPDATED)[0].generated_by_username == "Alice"
        assert not notes.is_generating("R")

    @pytest.mark.asyncio
    async def test_scheduled_manual_vendor_failure_is_silent(
        self, notes: MeetingNotesTrigger, room, hub: RecordingHub, summarizer: MagicMock,
    ) -> None:
        summarizer.summarize = AsyncMock(side_effect=SummarizationError("timeout"))

        notes.schedule_manual("R", requester_id="c-alice")
        await notes.wait_idle()

        assert hub.sent == []
        assert not notes.is_generating("R")
