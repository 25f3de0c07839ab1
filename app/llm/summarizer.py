"""
app.llm.summarizer
~~~~~~~~~~~~~~~~~~

会议纪要 LLM 客户端 —— 只负责与 Google Gemini API 的连接和调用。

不包含 Prompt 组装逻辑（属于 ``app.prompts.meeting_notes``），也不关心
纪要如何分发（属于 ``MeetingNotesTrigger``）。调用失败统一抛
``SummarizationError``，由上层决定跳过本轮。
"""
from __future__ import annotations

import asyncio

from google import genai
from google.genai import types

from app.core.config import settings
from app.core.errors import SummarizationError
from app.core.logging import get_logger
from app.llm.client import create_gemini_client

logger = get_logger(__name__)


class MeetingNotesSummarizer:
    """Gemini 纪要生成器（无状态，每次调用独立请求）。

    Attributes:
        model_name: 使用的 Gemini 模型名称。
        timeout: 单次调用超时（秒）。
        max_tokens: 最大输出 token 数。
    """

    def __init__(
        self,
        model_name: str | None = None,
        client: genai.Client | None = None,
        timeout: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """初始化纪要生成器。

        Args:
            model_name: Gemini 模型名称，默认读取 ``settings.GEMINI_MODEL``。
            client: 可选的 ``genai.Client`` 实例（用于测试注入 mock）。
            timeout: 调用超时，默认读取 ``settings.SUMMARY_TIMEOUT``。
            max_tokens: 最大输出，默认读取 ``settings.SUMMARY_MAX_TOKENS``。
        """
        self.model_name: str = model_name or settings.GEMINI_MODEL
        self.timeout: float = timeout if timeout is not None else settings.SUMMARY_TIMEOUT
        self.max_tokens: int = max_tokens or settings.SUMMARY_MAX_TOKENS
        self._client: genai.Client = client or create_gemini_client()
        logger.info("纪要 LLM 客户端已初始化 | model=%s", self.model_name)

    async def summarize(self, system_prompt: str, user_prompt: str) -> str:
        """生成纪要文本。

        Args:
            system_prompt: 系统指令（会议信息 + 格式要求）。
            user_prompt: 对话记录。

        Returns:
            Markdown 格式的纪要。

        Raises:
            SummarizationError: 超时、调用异常或返回空文本。
        """
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model_name,
                    contents=user_prompt,
                    config=types.GenerateContentConfig(
                        system_instruction=system_prompt,
                        max_output_tokens=self.max_tokens,
                        temperature=0.7,
                    ),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise SummarizationError(f"纪要生成超时（{self.timeout:.0f}s）") from e
        except Exception as e:
            logger.error("LLM 调用异常: %s", e, exc_info=True)
            raise SummarizationError(f"纪要生成失败: {e!s}") from e

        text = (response.text or "").strip()
        if not text:
            raise SummarizationError("LLM 返回了空纪要")
        return text
