"""
tests.test_dispatcher
~~~~~~~~~~~~~~~~~~~~~

FanOutDispatcher + OrderedLanes 单元测试。
"""
from __future__ import annotations

import asyncio

import pytest

from app.services.dispatcher import (
    INTERIM_MESSAGE,
    NEW_MESSAGE,
    DispatchMetadata,
    FanOutDispatcher,
    OrderedLanes,
)
from app.services.room import SYSTEM_USER_ID, SYSTEM_USERNAME, Participant, build_message
from app.services.room_registry import RoomRegistry
from tests.fakes import RecordingHub, ScriptedTranslator


@pytest.fixture()
def room_r(registry: RoomRegistry) -> RoomRegistry:
    registry.join("R", Participant("c-alice", "Alice", "en"))
    registry.join("R", Participant("c-bob", "Bob", "fr"))
    return registry


class TestFanOut:

    @pytest.mark.asyncio
    async def test_basic_translation_fan_out(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        """Alice(en) 发 Hello there：Alice 收原文，Bob 收法语译文并带出处。"""
        translator.scripts[("Hello there", "fr")] = "Bonjour"
        message = build_message("c-alice", "Alice", "Hello there", "en")

        await dispatcher.dispatch(
            "R", "c-alice", "Hello there", "en", True,
            DispatchMetadata(sender_username="Alice", message=message),
        )

        [to_alice] = hub.events("c-alice", NEW_MESSAGE)
        [to_bob] = hub.events("c-bob", NEW_MESSAGE)
        assert to_alice.text == "Hello there"
        assert to_alice.is_translated is False
        assert to_bob.text == "Bonjour"
        assert to_bob.is_translated is True
        assert to_bob.original_text == "Hello there"
        assert to_bob.original_language_display == "English"
        assert to_bob.id == message.id

    @pytest.mark.asyncio
    async def test_same_language_recipients_get_original(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        room_r.join("R", Participant("c-carol", "Carol", "en-GB"))
        room_r.join("R", Participant("c-dan", "Dan", "multi"))

        await dispatcher.dispatch("R", "c-alice", "Hi all", "en", True, DispatchMetadata("Alice"))

        for cid in ("c-carol", "c-dan"):
            [payload] = hub.events(cid, NEW_MESSAGE)
            assert payload.text == "Hi all"
            assert payload.is_translated is False
        # 只为 Bob 的法语翻译了一次
        assert translator.calls == [("Hi all", "en", "fr")]

    @pytest.mark.asyncio
    async def test_one_translation_per_target_language(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        room_r.join("R", Participant("c-eve", "Eve", "fr-CA"))
        room_r.join("R", Participant("c-hans", "Hans", "de"))

        await dispatcher.dispatch("R", "c-alice", "Good news", "en", True, DispatchMetadata("Alice"))

        assert sorted(call[2] for call in translator.calls) == ["de", "fr"]
        assert hub.events("c-eve", NEW_MESSAGE)[0].text == "[fr] Good news"

    @pytest.mark.asyncio
    async def test_failed_language_falls_back_without_affecting_others(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        """翻译失败的语言组收到原文且 is_translated=False，其他组不受影响。"""
        room_r.join("R", Participant("c-hans", "Hans", "de"))
        translator.failing.add("fr")

        await dispatcher.dispatch("R", "c-alice", "Deadline moved", "en", True, DispatchMetadata("Alice"))

        [to_bob] = hub.events("c-bob", NEW_MESSAGE)
        [to_hans] = hub.events("c-hans", NEW_MESSAGE)
        assert to_bob.text == "Deadline moved"
        assert to_bob.is_translated is False
        assert to_bob.original_text is None
        assert to_hans.is_translated is True

    @pytest.mark.asyncio
    async def test_raising_translator_is_isolated(
        self, room_r: RoomRegistry, hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        class Exploding(ScriptedTranslator):
            async def translate(self, text: str, source_language: str, target_language: str) -> str:
                raise RuntimeError("vendor down")

        dispatcher = FanOutDispatcher(room_r, hub, Exploding())  # type: ignore[arg-type]

        await dispatcher.dispatch("R", "c-alice", "Still here", "en", True, DispatchMetadata("Alice"))

        assert hub.events("c-bob", NEW_MESSAGE)[0].text == "Still here"

    @pytest.mark.asyncio
    async def test_interim_event_carries_word_count(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher, hub: RecordingHub,
    ) -> None:
        await dispatcher.dispatch(
            "R", "c-alice", "so far", "en", False, DispatchMetadata("Alice", word_count=2),
        )

        [payload] = hub.events("c-bob", INTERIM_MESSAGE)
        assert payload.is_final is False
        assert payload.word_count == 2
        assert payload.id is None

    @pytest.mark.asyncio
    async def test_missing_room_is_noop(self, dispatcher: FanOutDispatcher, hub: RecordingHub) -> None:
        await dispatcher.dispatch("ghost", "c-x", "hello", "en", True, DispatchMetadata("X"))

        assert hub.sent == []


class TestOrdering:

    @pytest.mark.asyncio
    async def test_interims_then_final_arrive_in_order(
        self, room_r: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        """先提交的临时消息翻译更慢，也必须先送达；最终消息排在最后。"""
        translator.delays["one two"] = 0.05
        translator.delays["one two three"] = 0.01

        dispatcher.submit("R", "c-alice", "one two", "en", False, DispatchMetadata("Alice", word_count=2))
        dispatcher.submit("R", "c-alice", "one two three", "en", False, DispatchMetadata("Alice", word_count=3))
        dispatcher.submit("R", "c-alice", "one two three four", "en", True, DispatchMetadata("Alice"))
        await dispatcher.lanes.drain()

        received = [(name, payload.original_text) for cid, name, payload in hub.sent if cid == "c-bob"]
        assert received == [
            (INTERIM_MESSAGE, "one two"),
            (INTERIM_MESSAGE, "one two three"),
            (NEW_MESSAGE, "one two three four"),
        ]

    @pytest.mark.asyncio
    async def test_different_senders_do_not_wait_for_each_other(self) -> None:
        lanes = OrderedLanes()
        trace: list[str] = []
        gate = asyncio.Event()

        async def slow() -> None:
            await gate.wait()
            trace.append("slow")

        async def fast() -> None:
            trace.append("fast")
            gate.set()

        lanes.submit("alice", slow())
        lanes.submit("bob", fast())
        await lanes.drain()

        assert trace == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_failed_task_does_not_block_lane(self) -> None:
        lanes = OrderedLanes()
        trace: list[str] = []

        async def broken() -> None:
            raise RuntimeError("boom")

        async def ok() -> None:
            trace.append("ok")

        lanes.submit("alice", broken())
        lanes.submit("alice", ok())
        await lanes.drain("alice")

        assert trace == ["ok"]

    @pytest.mark.asyncio
    async def test_system_notices_in_different_rooms_do_not_wait(
        self, registry: RoomRegistry, dispatcher: FanOutDispatcher,
        hub: RecordingHub, translator: ScriptedTranslator,
    ) -> None:
        """A 房间的通知翻译很慢，B 房间的通知照常送达。"""
        registry.join("A", Participant("c-frank", "Frank", "fr"))
        registry.join("B", Participant("c-bob", "Bob", "en"))
        translator.delays["Frank has joined the room."] = 0.3

        slow = dispatcher.submit(
            "A", SYSTEM_USER_ID, "Frank has joined the room.", "en", True, DispatchMetadata(SYSTEM_USERNAME),
        )
        fast = dispatcher.submit(
            "B", SYSTEM_USER_ID, "Bob has joined the room.", "en", True, DispatchMetadata(SYSTEM_USERNAME),
        )
        await asyncio.wait_for(fast, timeout=0.1)

        assert not slow.done()
        assert [p.text for p in hub.events("c-bob", NEW_MESSAGE)] == ["Bob has joined the room."]
        assert hub.events("c-frank", NEW_MESSAGE) == []

        await dispatcher.lanes.drain()
        assert hub.events("c-frank", NEW_MESSAGE)[0].text == "[fr] Frank has joined the room."
