"""
tests.test_speech_state
~~~~~~~~~~~~~~~~~~~~~~~

语音轮次状态机单元测试（纯逻辑，不涉及 IO）。
"""
from __future__ import annotations

from app.services.speech_state import SpeechState, UtteranceAccumulator


def speaking() -> UtteranceAccumulator:
    acc = UtteranceAccumulator("c-alice", "R", word_threshold=2)
    acc.speech_started()
    return acc


def test_transcript_ignored_while_idle() -> None:
    acc = UtteranceAccumulator("c-alice", "R")

    assert acc.on_transcript("hello there", is_final=False) is None
    assert acc.state is SpeechState.IDLE


def test_speech_started_opens_new_turn() -> None:
    acc = UtteranceAccumulator("c-alice", "R")

    assert acc.speech_started() is True
    assert acc.speech_started() is False
    assert acc.is_speaking
    assert acc.turn_id == 1


def test_speaking_started_fires_once_per_turn() -> None:
    """词数从 1 跨到 2 时只触发一次，后续片段不再触发。"""
    acc = speaking()

    first = acc.on_transcript("hello", is_final=False)
    second = acc.on_transcript("hello there", is_final=False)
    third = acc.on_transcript("hello there friend", is_final=False)

    assert first is not None and not first.speaking_started and not first.should_dispatch
    assert second is not None and second.speaking_started and second.should_dispatch
    assert third is not None and not third.speaking_started and third.should_dispatch
    assert third.word_count == 3


def test_current_text_combines_finals_and_partial() -> None:
    acc = speaking()
    acc.on_transcript("good morning", is_final=True)

    update = acc.on_transcript("every", is_final=False)

    assert update is not None
    assert update.text == "good morning every"


def test_duplicate_final_segment_is_not_appended_twice() -> None:
    acc = speaking()
    acc.on_transcript("good morning", is_final=True)
    acc.on_transcript("good morning", is_final=True)
    acc.on_transcript("everyone", is_final=True)

    end = acc.utterance_end()

    assert end is not None
    assert end.final_text == "good morning everyone"


def test_empty_segment_is_ignored() -> None:
    acc = speaking()

    assert acc.on_transcript("   ", is_final=True) is None


def test_utterance_end_is_idempotent() -> None:
    """同一轮连续两次结束信号，只有第一次生效。"""
    acc = speaking()
    acc.on_transcript("see you tomorrow", is_final=True)

    first = acc.utterance_end()
    second = acc.utterance_end()

    assert first is not None and first.final_text == "see you tomorrow"
    assert second is None
    assert acc.state is SpeechState.IDLE


def test_utterance_end_without_finals_yields_empty_text() -> None:
    acc = speaking()
    acc.on_transcript("uh", is_final=False)

    end = acc.utterance_end()

    assert end is not None and end.final_text == ""


def test_next_turn_starts_clean() -> None:
    acc = speaking()
    acc.on_transcript("first turn text", is_final=True)
    acc.utterance_end()

    acc.speech_started()
    update = acc.on_transcript("second turn", is_final=False)

    assert acc.turn_id == 2
    assert update is not None
    assert update.text == "second turn"
    assert update.speaking_started


def test_abort_discards_accumulated_text() -> None:
    acc = speaking()
    acc.on_transcript("half a sentence", is_final=True)

    assert acc.abort() is True
    assert acc.abort() is False
    assert acc.utterance_end() is None
