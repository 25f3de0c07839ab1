"""
app.services.transcription
~~~~~~~~~~~~~~~~~~~~~~~~~~

按键说话的录音转写 —— 调用 Deepgram 预录音频 REST 接口。

只负责一次请求 / 响应：上传音频字节，取回第一条候选文本。
失败（超时、非 2xx、响应结构异常）统一抛 ``TranscriptionError``。
"""
from __future__ import annotations

from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import TranscriptionError
from app.core.languages import AUTO_DETECT, short_code
from app.core.logging import get_logger

logger = get_logger(__name__)


def parse_transcript(data: Any) -> str:
    """从 Deepgram 响应中取出 ``results.channels[0].alternatives[0].transcript``。"""
    try:
        return str(data["results"]["channels"][0]["alternatives"][0]["transcript"]).strip()
    except (KeyError, IndexError, TypeError) as e:
        raise TranscriptionError("转写服务响应结构异常") from e


class DeepgramTranscriber:
    """Deepgram 转写客户端。"""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key: str = api_key if api_key is not None else settings.DEEPGRAM_API_KEY
        self.api_url: str = api_url or settings.DEEPGRAM_API_URL
        self.model: str = model or settings.DEEPGRAM_MODEL
        self.timeout: float = timeout if timeout is not None else settings.TRANSCRIBE_TIMEOUT
        self._client: httpx.AsyncClient = client or httpx.AsyncClient()

    async def transcribe(
        self, audio: bytes, language: str, mimetype: str = "audio/webm",
    ) -> str:
        """转写一段录音，返回文本（可能为空字符串）。

        Args:
            audio: 录音字节。
            language: 说话者的语言偏好，``multi`` 表示自动检测。
            mimetype: 录音的 MIME 类型。
        """
        if not self.api_key:
            raise TranscriptionError("未配置 DEEPGRAM_API_KEY")

        params = {
            "model": self.model,
            "smart_format": "true",
            "language": AUTO_DETECT if language == AUTO_DETECT else short_code(language),
        }
        headers = {"Authorization": f"Token {self.api_key}", "Content-Type": mimetype}
        try:
            response = await self._client.post(
                self.api_url, params=params, headers=headers, content=audio, timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"转写请求异常: {e!r}") from e

        if not response.is_success:
            raise TranscriptionError(f"转写服务返回状态码 {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise TranscriptionError("转写服务返回非 JSON 响应") from e

        transcript = parse_transcript(data)
        logger.info("录音转写完成 | lang=%s | %d 字节 → %d 字符", language, len(audio), len(transcript))
        return transcript

    async def aclose(self) -> None:
        await self._client.aclose()
