"""
app.services.reactions
~~~~~~~~~~~~~~~~~~~~~~

表情回应台账 —— 在已存储消息上切换表情，并把完整的表情表广播给房间。

同一参与者对同一消息的同一表情至多一条；再次点击即取消。
同一参与者可以同时对一条消息保留多个不同的表情。
"""
from __future__ import annotations

from app.core.errors import MessageNotFoundError, ParticipantNotFoundError
from app.core.logging import get_logger
from app.schemas.meeting import ReactionMap, ReactionUpdatedEvent, Reactor
from app.services.connection import ConnectionHub
from app.services.room import MeetingRoom
from app.services.room_registry import RoomRegistry

logger = get_logger(__name__)

REACTION_UPDATED = "message-reaction-updated"


def toggle_reaction(reactions: ReactionMap, reactor: Reactor, emoji: str) -> bool:
    """在表情表上切换一次回应，原地修改，返回 True 表示新增、False 表示取消。"""
    reactors = reactions.get(emoji, [])
    for index, existing in enumerate(reactors):
        if existing.user_id == reactor.user_id:
            del reactors[index]
            if not reactors:
                reactions.pop(emoji, None)
            return False
    reactions[emoji] = [*reactors, reactor]
    return True


def copy_reactions(reactions: ReactionMap) -> ReactionMap:
    return {emoji: list(reactors) for emoji, reactors in reactions.items()}


class ReactionLedger:
    """表情回应服务。"""

    def __init__(self, registry: RoomRegistry, hub: ConnectionHub) -> None:
        self.registry = registry
        self.hub = hub

    async def toggle_reaction(
        self, room_name: str, message_id: str, reactor_connection_id: str, emoji: str,
    ) -> ReactionMap | None:
        """切换表情并广播更新后的完整表情表。

        房间、参与者或消息不存在时记录警告并返回 None，不影响其他人。
        """
        room = self.registry.get(room_name)
        if room is None:
            logger.warning("表情回应的房间不存在 | room=%s", room_name)
            return None

        try:
            reactions = await room.actor.submit(
                self._apply, room, message_id, reactor_connection_id, emoji,
            )
        except (MessageNotFoundError, ParticipantNotFoundError) as e:
            logger.warning("忽略表情回应: %s", e.message)
            return None

        await self.hub.broadcast(
            list(room.participants),
            REACTION_UPDATED,
            ReactionUpdatedEvent(message_id=message_id, reactions=reactions),
        )
        return reactions

    @staticmethod
    def _apply(
        room: MeetingRoom, message_id: str, reactor_connection_id: str, emoji: str,
    ) -> ReactionMap:
        message = room.find_message(message_id)
        if message is None:
            raise MessageNotFoundError(room.name, message_id)
        participant = room.participants.get(reactor_connection_id)
        if participant is None:
            raise ParticipantNotFoundError(room.name, reactor_connection_id)

        added = toggle_reaction(
            message.reactions,
            Reactor(user_id=participant.connection_id, username=participant.username),
            emoji,
        )
        logger.info(
            "%s表情 %s | room=%s | user=%s | msg=%s",
            "添加" if added else "取消", emoji, room.name, participant.username, message_id,
        )
        return copy_reactions(message.reactions)
