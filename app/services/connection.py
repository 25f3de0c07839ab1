"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 维护连接 ID → WebSocket 的映射，提供定向发送与广播。

所有出站事件都编码为 JSON 信封 ``{"event": 名称, "data": 载荷}``。
向不存在（已断开）的连接发送是无操作，不会抛异常。
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel

from app.core.logging import get_logger

logger = get_logger(__name__)

ERROR = "error"


def encode_event(event: str, payload: BaseModel | dict[str, Any] | None) -> str:
    """把事件名和载荷编码为 JSON 文本帧。"""
    if isinstance(payload, BaseModel):
        data: Any = payload.model_dump(mode="json")
    else:
        data = payload or {}
    return json.dumps({"event": event, "data": data}, ensure_ascii=False)


class ConnectionHub:
    """WebSocket 连接中心。

    整个进程共享一个实例，房间只记录连接 ID，真正的发送都经过这里。

    Attributes:
        active_connections: 当前在线的连接 ID → WebSocket。
    """

    def __init__(self) -> None:
        self.active_connections: dict[str, WebSocket] = {}

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """接受新连接并登记。"""
        await websocket.accept()
        self.active_connections[connection_id] = websocket

    def disconnect(self, connection_id: str) -> None:
        """移除断开的连接。"""
        self.active_connections.pop(connection_id, None)

    async def send(
        self, connection_id: str, event: str, payload: BaseModel | dict[str, Any] | None = None,
    ) -> bool:
        """向单个连接发送事件，返回是否成功送出。"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.debug("目标连接已不存在，丢弃事件 | conn=%s | event=%s", connection_id, event)
            return False
        try:
            await websocket.send_text(encode_event(event, payload))
            return True
        except Exception as e:
            logger.warning("发送失败，移除断开的连接 | conn=%s | event=%s | %s", connection_id, event, e)
            self.disconnect(connection_id)
            return False

    async def broadcast(
        self,
        connection_ids: Iterable[str],
        event: str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> None:
        """向一组连接发送同一事件。"""
        message = encode_event(event, payload)
        targets = [(cid, self.active_connections.get(cid)) for cid in connection_ids]
        targets = [(cid, ws) for cid, ws in targets if ws is not None]
        results = await asyncio.gather(
            *(ws.send_text(message) for _, ws in targets), return_exceptions=True,
        )
        for (cid, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | conn=%s | event=%s", cid, event)
                self.disconnect(cid)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self.active_connections)
