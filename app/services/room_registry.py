"""
app.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 管理所有会议室的生命周期。

- 第一次 ``join`` 时创建房间
- 最后一位参与者 ``leave`` 后删除房间（不保留空房间，不跨重启持久化）

注册表是显式的服务对象，由 FastAPI lifespan 创建并挂在 ``app.state`` 上，
测试中可以并行构造多个互相独立的实例。
"""
from __future__ import annotations

from app.core.errors import RoomNotFoundError
from app.core.logging import get_logger
from app.schemas.meeting import RoomInfoData
from app.services.room import MeetingRoom, Participant

logger = get_logger(__name__)


class RoomRegistry:
    """内存中的房间名 → ``MeetingRoom`` 映射。

    以下方法都是同步的，在单事件循环内原子执行。
    """

    def __init__(self, message_limit: int = 100) -> None:
        self.message_limit = message_limit
        self._rooms: dict[str, MeetingRoom] = {}

    def get(self, room_name: str) -> MeetingRoom | None:
        return self._rooms.get(room_name)

    def require(self, room_name: str) -> MeetingRoom:
        """获取房间，不存在时抛 ``RoomNotFoundError``。"""
        room = self._rooms.get(room_name)
        if room is None:
            raise RoomNotFoundError(room_name)
        return room

    def get_or_create(self, room_name: str) -> MeetingRoom:
        if room_name not in self._rooms:
            self._rooms[room_name] = MeetingRoom(room_name, message_limit=self.message_limit)
            logger.info("会议室已创建 | room=%s", room_name)
        return self._rooms[room_name]

    def join(self, room_name: str, participant: Participant) -> MeetingRoom:
        """加入房间。同一连接重复加入时覆盖原参与者信息。"""
        room = self.get_or_create(room_name)
        room.participants[participant.connection_id] = participant
        logger.info(
            "参与者加入 | room=%s | user=%s | lang=%s | 在线: %d",
            room_name, participant.username, participant.language, len(room.participants),
        )
        return room

    def leave(self, room_name: str, connection_id: str) -> Participant | None:
        """离开房间，返回被移除的参与者；房间因此变空时一并删除。"""
        room = self._rooms.get(room_name)
        if room is None:
            return None
        participant = room.participants.pop(connection_id, None)
        if participant is None:
            return None

        logger.info(
            "参与者离开 | room=%s | user=%s | 在线: %d",
            room_name, participant.username, len(room.participants),
        )
        if room.is_empty:
            del self._rooms[room_name]
            room.actor.close()
            logger.info("会议室已销毁（无人在线） | room=%s", room_name)
        return participant

    def rooms_of(self, connection_id: str) -> list[str]:
        """某个连接当前所在的全部房间名。"""
        return [name for name, room in self._rooms.items() if connection_id in room.participants]

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有活跃房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]

    def __contains__(self, room_name: object) -> bool:
        return room_name in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
