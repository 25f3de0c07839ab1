"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

限流相关组件。

- ``limiter``：REST 接口限流器（slowapi，按客户端 IP）。
- ``WebSocketRateLimiter``：按连接限制文字消息的发送间隔。
- ``TranslationThrottle``：进程级翻译请求计数器，窗口内请求过多时插入固定延迟
  （只做节流，不拒绝请求）。
"""
from __future__ import annotations

import time
from collections.abc import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address


# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的简单 WebSocket 消息限流器。

    记录每个连接上一次发送消息的时间，过快的请求会被拒绝。
    """

    def __init__(self, interval_seconds: float = 0.5) -> None:
        self.interval_seconds = interval_seconds
        self._last_message_time: dict[str, float] = {}

    def is_allowed(self, client_id: str) -> bool:
        """检查客户端是否允许发送消息。

        Args:
            client_id: 客户端唯一标识（连接 ID）。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        now = time.time()
        last_time = self._last_message_time.get(client_id, 0.0)

        if now - last_time >= self.interval_seconds:
            self._last_message_time[client_id] = now
            return True
        return False

    def remove_client(self, client_id: str) -> None:
        """清理断开连接的客户端记录。"""
        self._last_message_time.pop(client_id, None)


# --------- 翻译节流器 ---------
class TranslationThrottle:
    """进程级的翻译请求滑动计数器。

    ``acquire()`` 是同步的（单事件循环内原子执行），返回调用方在发请求前
    应当等待的秒数；计数与时间戳在同一步内完成更新。

    Attributes:
        window_seconds: 计数窗口长度，过期后计数清零。
        threshold: 窗口内请求数超过该值后开始节流。
        delay_seconds: 节流时插入的固定延迟。
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        threshold: int = 50,
        delay_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.threshold = threshold
        self.delay_seconds = delay_seconds
        self._clock = clock
        self.count: int = 0
        self.reset_at: float = clock() + window_seconds
        self.last_request: float = 0.0

    def acquire(self) -> float:
        """登记一次请求，返回需要等待的秒数（0 表示无需等待）。"""
        now = self._clock()
        if now > self.reset_at:
            self.count = 0
            self.reset_at = now + self.window_seconds

        delay = 0.0
        # 近期请求过多且距上次请求不足 1 秒时才节流
        if self.count > self.threshold and now - self.last_request < 1.0:
            delay = self.delay_seconds

        self.count += 1
        self.last_request = now + delay
        return delay
