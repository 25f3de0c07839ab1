"""
app.prompts.meeting_notes
~~~~~~~~~~~~~~~~~~~~~~~~~

会议纪要的系统 Prompt 与 Prompt 构建工具。

将 Prompt 独立管理，方便在不修改 LLM 连接代码的前提下调整纪要格式。
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import NamedTuple

from app.schemas.meeting import Message

# ---------------------------------------------------------------------------
# 系统 Prompt 模板 —— 会议信息由 build_meeting_notes_prompt 填入
# ---------------------------------------------------------------------------
MEETING_NOTES_SYSTEM_PROMPT: str = """\
You are an AI assistant that generates comprehensive, well-organized meeting notes from conversation transcripts.

Meeting Information:
- Room: {room}
- Number of Participants: {participant_count}
- Participants: {participants}
- Active Speakers: {active_speakers}
- Total Messages: {total_messages}
- Timestamp: {timestamp}

Instructions:
1. Organize the notes into clearly labeled sections using proper Markdown formatting:
   - Use "# Meeting Notes" as the main title
   - Use second-level headings (##) for major sections like "Summary", "Key Discussion Points", etc.
   - Use third-level headings (###) for sub-sections if needed
2. Focus on extracting meaningful content and eliminating small talk or irrelevant exchanges.
3. Maintain a professional, concise tone.
4. Use Markdown bullet points (* or -) for readability.
5. Include specific details mentioned (dates, numbers, proper nouns).
6. If the discussion is technical, preserve technical terms accurately.
7. Separate every block (heading, list, paragraph) with a blank line.
8. Include participant information in the header section.

Generate meeting notes that would be immediately useful to participants as a record of the conversation.\
"""


class ParticipationStat(NamedTuple):
    username: str
    message_count: int
    percentage: int


class MeetingNotesPrompt(NamedTuple):
    system_prompt: str
    user_prompt: str


def participation_stats(messages: Sequence[Message]) -> list[ParticipationStat]:
    """按发言数从高到低统计每位参与者的消息数和占比（系统通知不计入）。"""
    counts = Counter(m.username for m in messages if not m.is_system)
    total = sum(counts.values())
    if total == 0:
        return []
    return [
        ParticipationStat(username, count, round(count / total * 100))
        for username, count in counts.most_common()
    ]


def format_transcript(messages: Sequence[Message]) -> str:
    """按时间顺序格式化为 ``username: text`` 行。"""
    return "\n".join(f"{m.username}: {m.text}" for m in messages if not m.is_system)


def build_meeting_notes_prompt(
    room_name: str,
    participant_names: Sequence[str],
    messages: Sequence[Message],
    now: datetime | None = None,
) -> MeetingNotesPrompt | None:
    """组装纪要生成的系统 Prompt 与用户 Prompt。

    Args:
        room_name: 房间名。
        participant_names: 当前在线参与者的显示名。
        messages: 房间历史消息（可包含系统通知，会被过滤掉）。
        now: 时间戳，默认当前 UTC 时间。

    Returns:
        ``MeetingNotesPrompt``；没有任何非系统消息时返回 None。
    """
    stats = participation_stats(messages)
    if not stats:
        return None

    total = sum(s.message_count for s in stats)
    active_speakers = ", ".join(
        f"{s.username} ({s.message_count} messages, {s.percentage}% participation)"
        for s in stats
    )
    system_prompt = MEETING_NOTES_SYSTEM_PROMPT.format(
        room=room_name,
        participant_count=len(participant_names),
        participants=", ".join(participant_names),
        active_speakers=active_speakers,
        total_messages=total,
        timestamp=(now or datetime.now(timezone.utc)).isoformat(),
    )
    user_prompt = (
        "Please generate meeting notes from the following conversation transcript:\n\n"
        f"{format_transcript(messages)}"
    )
    return MeetingNotesPrompt(system_prompt=system_prompt, user_prompt=user_prompt)
