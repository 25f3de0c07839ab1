"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

WebSocket 限流器与翻译节流器单元测试。
"""
from __future__ import annotations

import time

from app.core.rate_limit import TranslationThrottle, WebSocketRateLimiter


def test_websocket_rate_limiter_unit() -> None:
    """测试 WebSocket 内存限流器的基础逻辑"""
    limiter = WebSocketRateLimiter(interval_seconds=0.5)
    client_id = "conn-1"

    # 第一次发消息应该允许
    assert limiter.is_allowed(client_id) is True

    # 立刻发第二次应该被拦截
    assert limiter.is_allowed(client_id) is False

    # 其他连接不受影响
    assert limiter.is_allowed("conn-2") is True

    # 等待超过间隔时间后应该放行
    time.sleep(0.6)
    assert limiter.is_allowed(client_id) is True

    # 最后清理记录
    limiter.remove_client(client_id)
    assert client_id not in limiter._last_message_time


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTranslationThrottle:
    """翻译节流器只插入延迟，不拒绝请求。"""

    def test_no_delay_under_threshold(self) -> None:
        throttle = TranslationThrottle(window_seconds=60, threshold=3, delay_seconds=1.0, clock=FakeClock())

        delays = [throttle.acquire() for _ in range(4)]

        assert delays == [0.0, 0.0, 0.0, 0.0]

    def test_delay_when_burst_exceeds_threshold(self) -> None:
        throttle = TranslationThrottle(window_seconds=60, threshold=3, delay_seconds=1.0, clock=FakeClock())
        for _ in range(4):
            throttle.acquire()

        assert throttle.acquire() == 1.0

    def test_no_delay_when_requests_are_spread_out(self) -> None:
        clock = FakeClock()
        throttle = TranslationThrottle(window_seconds=60, threshold=3, delay_seconds=1.0, clock=clock)
        for _ in range(4):
            throttle.acquire()

        clock.now += 5
        assert throttle.acquire() == 0.0

    def test_window_reset_clears_count(self) -> None:
        clock = FakeClock()
        throttle = TranslationThrottle(window_seconds=60, threshold=3, delay_seconds=1.0, clock=clock)
        for _ in range(10):
            throttle.acquire()

        clock.now += 61
        assert throttle.acquire() == 0.0
        assert throttle.count == 1
