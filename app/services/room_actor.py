"""
app.services.room_actor
~~~~~~~~~~~~~~~~~~~~~~~

房间串行执行器 —— 每个房间一个工作协程，按提交顺序逐个执行状态变更。

加入、留言入库、表情切换、纪要计数等对同一房间状态的读-改-写都通过
``RoomActor.submit()`` 投递，彼此之间不会交错；不同房间互不阻塞。

注意：提交的工作单元内部不能再向同一个 actor ``submit``，否则会自锁。
耗时的外部调用（翻译、纪要）不要放进工作单元。
"""
from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from app.core.errors import RoomNotFoundError
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_WorkItem = tuple[Callable[..., Any], tuple[Any, ...], "asyncio.Future[Any]"]


class RoomActor:
    """单个房间的串行工作队列。

    工作协程在第一次 ``submit()`` 时懒启动，因此可以在事件循环之外构造。

    Attributes:
        name: 所属房间名（仅用于日志）。
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: asyncio.Queue[_WorkItem] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closed = False

    async def submit(self, fn: Callable[..., T | Awaitable[T]], *args: Any) -> T:
        """投递一个工作单元并等待其结果。工作单元抛出的异常会原样传给调用方。"""
        if self._closed:
            raise RoomNotFoundError(self.name)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(), name=f"room-actor:{self.name}")

        await self._queue.put((fn, args, future))
        return await future

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            fn, args, future = await self._queue.get()
            try:
                result = fn(*args)
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                # 房间在工作单元执行途中被关闭
                if not future.done():
                    future.set_exception(RoomNotFoundError(self.name))
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    def close(self) -> None:
        """停止工作协程，尚未执行的工作单元以 ``RoomNotFoundError`` 结束。"""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
        if self._queue is not None:
            while not self._queue.empty():
                _, _, future = self._queue.get_nowait()
                if not future.done():
                    future.set_exception(RoomNotFoundError(self.name))
        logger.debug("房间执行器已关闭 | room=%s", self.name)

    @property
    def closed(self) -> bool:
        return self._closed
