"""
app.core.logging
~~~~~~~~~~~~~~~~

统一日志配置，根据环境自动设置日志级别和格式。

所有模块应通过 ``get_logger(__name__)`` 获取 logger 实例，
不要直接使用 ``print()`` 输出调试信息。

WebSocket 连接在处理期间会把 ``request_id_ctx_var`` 设为 ``ws-xxxxxxxx``，
同一连接产生的所有日志行都会带上这个标识，方便按连接排查问题。
"""
from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

from app.core.config import settings

# 当前请求 / 连接标识，未设置时显示为 "-"
request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")

# 日志格式：时间 | 级别 | 模块名 | [请求 ID] 消息
_LOG_FORMAT: str = "%(asctime)s | %(levelname)-7s | %(name)s | [%(request_id)s] %(message)s"
_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"


class RequestIdFilter(logging.Filter):
    """把 ``request_id_ctx_var`` 的当前值注入到每条日志记录。"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx_var.get()
        return True


def setup_logging() -> None:
    """根据当前环境配置全局日志。应在应用启动时调用一次。"""
    level = getattr(logging, settings.effective_log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    handler.addFilter(RequestIdFilter())

    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,  # 覆盖可能已有的 basicConfig
    )

    # 降低第三方库的日志噪音
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """获取指定模块的 logger 实例。

    Args:
        name: 模块名，通常传 ``__name__``。

    Returns:
        配置好的 ``logging.Logger`` 实例。
    """
    return logging.getLogger(name)
