"""
tests.test_room_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~

会议室 REST 接口测试。

通过 ``httpx.ASGITransport`` 直接调用应用，服务对象手动挂到 ``app.state``。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from app.core.rate_limit import limiter
from app.main import app
from app.services.meeting_notes import MeetingNotesTrigger
from app.services.room import Participant, build_message
from app.services.room_registry import RoomRegistry
from tests.fakes import RecordingHub, ScriptedTranslator


@pytest_asyncio.fixture()
async def client(
    monkeypatch: pytest.MonkeyPatch,
    registry: RoomRegistry,
    hub: RecordingHub,
    translator: ScriptedTranslator,
    notes: MeetingNotesTrigger,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    monkeypatch.setattr(limiter, "enabled", False)
    app.state.room_registry = registry
    app.state.connection_hub = hub
    app.state.translator = translator
    app.state.meeting_notes = notes

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture()
def room(registry: RoomRegistry):
    room = registry.join("R", Participant("c-alice", "Alice", "en"))
    registry.join("R", Participant("c-bob", "Bob", "fr"))
    for text, cid, name, lang in [
        ("Hello there", "c-alice", "Alice", "en"),
        ("Bonjour", "c-bob", "Bob", "fr"),
        ("See you", "c-alice", "Alice", "en"),
    ]:
        room.append_message(build_message(cid, name, text, lang))
    return room


@pytest.mark.asyncio
async def test_health(client: httpx.AsyncClient) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_list_and_get_room(client: httpx.AsyncClient, room) -> None:
    listed = (await client.get("/api/rooms")).json()
    detail = (await client.get("/api/rooms/R")).json()

    assert listed["data"] == [{"room": "R", "participant_count": 2, "message_count": 3}]
    assert detail["code"] == 200
    assert detail["data"]["participant_count"] == 2


@pytest.mark.asyncio
async def test_missing_room_is_404_and_not_created(
    client: httpx.AsyncClient, registry: RoomRegistry,
) -> None:
    response = await client.get("/api/rooms/ghost")

    assert response.status_code == 404
    assert response.json()["code"] == 404
    assert "ghost" not in registry


@pytest.mark.asyncio
async def test_history_paging(client: httpx.AsyncClient, room) -> None:
    body = (await client.get("/api/rooms/R/history", params={"skip": 1, "limit": 1})).json()

    assert body["data"]["total"] == 3
    assert [m["text"] for m in body["data"]["messages"]] == ["Bonjour"]


@pytest.mark.asyncio
async def test_translate_transcript(
    client: httpx.AsyncClient, room, translator: ScriptedTranslator,
) -> None:
    translator.failing.add("de")
    translator.scripts[("Bonjour", "en")] = "Hello"

    en = (await client.post("/api/rooms/R/translate-transcript", json={"target_language": "en"})).json()
    de = (await client.post("/api/rooms/R/translate-transcript", json={"target_language": "de"})).json()

    assert [(m["text"], m["is_translated"]) for m in en["data"]["messages"]] == [
        ("Hello there", False),
        ("Hello", True),
        ("See you", False),
    ]
    assert all(m["is_translated"] is False for m in de["data"]["messages"])


@pytest.mark.asyncio
async def test_manual_meeting_notes(client: httpx.AsyncClient, room, hub: RecordingHub) -> None:
    response = await client.post("/api/rooms/R/meeting-notes", json={"requested_by": "Moderator"})

    assert response.status_code == 200
    assert response.json()["data"]["notes"].startswith("# Meeting Notes")
    assert room.meeting_notes[-1].generated_by_username == "Moderator"
    assert hub.events("c-bob", "meeting-notes-updated")


@pytest.mark.asyncio
async def test_meeting_notes_without_messages_is_400(
    client: httpx.AsyncClient, registry: RoomRegistry,
) -> None:
    registry.join("Quiet", Participant("c-x", "X", "en"))

    response = await client.post("/api/rooms/Quiet/meeting-notes")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_language_lookup(client: httpx.AsyncClient) -> None:
    body = (await client.get("/api/languages/French (General)")).json()

    assert body["data"] == {"code": "French (General)", "short_code": "fr", "display_name": "French"}
