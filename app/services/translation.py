"""
app.services.translation
~~~~~~~~~~~~~~~~~~~~~~~~

翻译网关 —— 对外部翻译服务的窄封装。

- 空文本或源 / 目标语言归一化后相同：直接返回原文，不发请求
- 进程级节流：窗口内请求过多时在请求前插入固定延迟
- 每次请求带超时；非 2xx、响应格式异常或超时时按指数退避重试
- 重试耗尽后返回 **原文**，翻译失败永远不会阻塞消息投递
"""
from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import TranslationError
from app.core.languages import PIVOT_LANGUAGE, short_code
from app.core.logging import get_logger
from app.core.rate_limit import TranslationThrottle

logger = get_logger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_LIST_ITEM_RE = re.compile(r"^(\s*)([*-]|\d+\.)\s+(.+)$")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_LONG_PARAGRAPH = 200


def _preview(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def parse_translation(data: Any) -> str:
    """解析 gtx 接口的响应：``[[["译文", "原文", ...], ...], ...]``。

    Raises:
        TranslationError: 响应结构不符合预期或译文为空。
    """
    if not isinstance(data, list) or not data or not isinstance(data[0], list):
        raise TranslationError("翻译服务响应格式异常")
    pieces = [
        item[0] for item in data[0]
        if isinstance(item, list) and item and isinstance(item[0], str)
    ]
    translated = "".join(pieces).strip()
    if not translated:
        raise TranslationError("翻译服务返回空结果")
    return translated


class TranslationGateway:
    """翻译网关。

    可以被并发调用；除节流计数器外没有共享的可变状态。

    Attributes:
        api_url: 翻译服务地址。
        timeout: 单次请求超时（秒）。
        max_retries: 首次失败后的最大重试次数。
        backoff_base: 第一次重试前的等待，之后每次翻倍。
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        throttle: TranslationThrottle | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ) -> None:
        self.api_url: str = api_url or settings.TRANSLATE_API_URL
        self.timeout: float = timeout if timeout is not None else settings.TRANSLATE_TIMEOUT
        self.max_retries: int = (
            max_retries if max_retries is not None else settings.TRANSLATE_MAX_RETRIES
        )
        self.backoff_base: float = (
            backoff_base if backoff_base is not None else settings.TRANSLATE_BACKOFF_BASE
        )
        self.throttle: TranslationThrottle = throttle or TranslationThrottle(
            window_seconds=settings.TRANSLATE_RATE_WINDOW,
            threshold=settings.TRANSLATE_RATE_THRESHOLD,
            delay_seconds=settings.TRANSLATE_THROTTLE_DELAY,
        )
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(
            headers={
                "User-Agent": "Mozilla/5.0 (compatible; polyglot-meeting/0.1)",
                "Accept": "application/json",
            },
        )

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        """翻译文本；任何失败都回退为原文。"""
        if not text or not text.strip():
            return text

        source = short_code(source_language)
        target = short_code(target_language)
        if source == target:
            return text

        delay = self.throttle.acquire()
        if delay > 0:
            logger.info("翻译请求过多，节流 %.1fs", delay)
            await asyncio.sleep(delay)

        for attempt in range(self.max_retries + 1):
            try:
                translated = await self._request(text, source, target)
                logger.debug("翻译完成 | %s→%s | %s", source, target, _preview(translated))
                return translated
            except TranslationError as e:
                if attempt < self.max_retries:
                    backoff = self.backoff_base * (2 ** attempt)
                    logger.warning(
                        "翻译失败，%.1fs 后重试 (%d/%d) | %s→%s | %s",
                        backoff, attempt + 1, self.max_retries, source, target, e,
                    )
                    await asyncio.sleep(backoff)
                else:
                    logger.warning(
                        "翻译重试 %d 次后仍失败，回退原文 | %s→%s | %s",
                        self.max_retries, source, target, e,
                    )
        return text

    async def _request(self, text: str, source: str, target: str) -> str:
        params = {"client": "gtx", "sl": source, "tl": target, "dt": "t", "q": text}
        try:
            response = await self._client.get(self.api_url, params=params, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise TranslationError(f"翻译请求异常: {e!r}") from e

        if not response.is_success:
            raise TranslationError(f"翻译服务返回状态码 {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise TranslationError("翻译服务返回非 JSON 响应") from e
        return parse_translation(data)

    async def translate_markdown(
        self, document: str, target_language: str, source_language: str = PIVOT_LANGUAGE,
    ) -> str:
        """按块翻译 Markdown 文档，尽量保留结构。

        - 标题只翻译标题文字，保留 ``#`` 前缀
        - 列表块逐行翻译条目内容，保留缩进和列表符号
        - 代码块原样保留
        - 超过 200 字符的段落按句子拆开翻译
        """
        if short_code(target_language) == short_code(source_language):
            return document

        translated_blocks: list[str] = []
        for raw_block in re.split(r"\n\n+", document):
            block = raw_block.strip()
            if not block:
                translated_blocks.append("")
                continue

            if block.startswith("```") and block.endswith("```"):
                translated_blocks.append(block)
                continue

            heading = _HEADING_RE.match(block)
            if heading and "\n" not in block:
                text = await self.translate(heading.group(2), source_language, target_language)
                translated_blocks.append(f"{heading.group(1)} {text}")
                continue

            lines = block.split("\n")
            if all(_LIST_ITEM_RE.match(line) or not line.strip() for line in lines):
                translated_lines: list[str] = []
                for line in lines:
                    item = _LIST_ITEM_RE.match(line)
                    if item is None:
                        translated_lines.append(line)
                        continue
                    text = await self.translate(item.group(3), source_language, target_language)
                    translated_lines.append(f"{item.group(1)}{item.group(2)} {text}")
                translated_blocks.append("\n".join(translated_lines))
                continue

            if len(block) > _LONG_PARAGRAPH:
                sentences = [s for s in _SENTENCE_SPLIT_RE.split(block) if s.strip()]
                translated = [
                    await self.translate(sentence, source_language, target_language)
                    for sentence in sentences
                ]
                translated_blocks.append(" ".join(translated))
            else:
                translated_blocks.append(
                    await self.translate(block, source_language, target_language),
                )

        return "\n\n".join(translated_blocks)

    async def aclose(self) -> None:
        """关闭底层 HTTP 连接池。应在 lifespan shutdown 中调用。"""
        await self._client.aclose()
