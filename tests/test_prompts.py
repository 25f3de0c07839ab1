"""
tests.test_prompts
~~~~~~~~~~~~~~~~~~

会议纪要 Prompt 组装测试。
"""
from __future__ import annotations

from datetime import datetime, timezone

from app.prompts.meeting_notes import build_meeting_notes_prompt, participation_stats
from app.services.room import build_message


def sample_messages():
    return [
        build_message("system", "System", "Alice has joined the room.", "en", is_system=True),
        build_message("c-alice", "Alice", "Budget is approved.", "en"),
        build_message("c-bob", "Bob", "Le lancement est lundi.", "fr"),
        build_message("c-alice", "Alice", "Great, thanks.", "en"),
    ]


def test_participation_stats_sorted_by_count() -> None:
    stats = participation_stats(sample_messages())

    assert [(s.username, s.message_count, s.percentage) for s in stats] == [
        ("Alice", 2, 67),
        ("Bob", 1, 33),
    ]


def test_prompt_contains_meeting_information() -> None:
    prompt = build_meeting_notes_prompt(
        "Weekly Sync",
        ["Alice", "Bob"],
        sample_messages(),
        now=datetime(2024, 5, 6, 9, 0, tzinfo=timezone.utc),
    )

    assert prompt is not None
    assert "Room: Weekly Sync" in prompt.system_prompt
    assert "Number of Participants: 2" in prompt.system_prompt
    assert "Alice (2 messages, 67% participation)" in prompt.system_prompt
    assert "Total Messages: 3" in prompt.system_prompt
    assert "2024-05-06T09:00:00+00:00" in prompt.system_prompt
    assert prompt.user_prompt.endswith(
        "Alice: Budget is approved.\nBob: Le lancement est lundi.\nAlice: Great, thanks.",
    )
    assert "has joined the room" not in prompt.user_prompt


def test_no_conversation_returns_none() -> None:
    only_system = sample_messages()[:1]

    assert build_meeting_notes_prompt("R", ["Alice"], only_system) is None
