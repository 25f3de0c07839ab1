"""
app.tts.engine
~~~~~~~~~~~~~~

基于 Edge-TTS 的语音合成引擎。

将文本异步转换为 MP3 音频，直接内存传输不落盘。
说话者有专属声线时使用该声线，否则按目标语言选择默认声线，
都没有时退回 ``settings.TTS_VOICE``。
"""
from __future__ import annotations

import asyncio
import base64

import edge_tts

from app.core.config import settings
from app.core.errors import SynthesisError
from app.core.languages import short_code
from app.core.logging import get_logger

logger = get_logger(__name__)

# 语言 → Edge-TTS 默认声线
DEFAULT_VOICES: dict[str, str] = {
    "en": "en-US-AriaNeural",
    "es": "es-ES-ElviraNeural",
    "fr": "fr-FR-DeniseNeural",
    "de": "de-DE-KatjaNeural",
    "it": "it-IT-ElsaNeural",
    "pt": "pt-BR-FranciscaNeural",
    "nl": "nl-NL-ColetteNeural",
    "ru": "ru-RU-SvetlanaNeural",
    "ja": "ja-JP-NanamiNeural",
    "ko": "ko-KR-SunHiNeural",
    "zh": "zh-CN-XiaoxiaoNeural",
    "hi": "hi-IN-SwaraNeural",
    "ar": "ar-SA-ZariyahNeural",
    "tr": "tr-TR-EmelNeural",
    "pl": "pl-PL-ZofiaNeural",
    "sv": "sv-SE-SofieNeural",
    "uk": "uk-UA-PolinaNeural",
    "vi": "vi-VN-HoaiMyNeural",
}


def default_voice_for(language: str) -> str:
    """目标语言的默认声线。"""
    return DEFAULT_VOICES.get(short_code(language), settings.TTS_VOICE)


async def _collect_audio(text: str, voice: str) -> bytes:
    communicate = edge_tts.Communicate(text, voice)

    # 流式接收音频块，拼接到内存缓冲区
    audio_data = bytearray()
    async for chunk in communicate.stream():
        if chunk["type"] == "audio":
            audio_data.extend(chunk["data"])
    return bytes(audio_data)


async def synthesize_speech(text: str, language: str, voice_id: str | None = None) -> bytes:
    """合成语音并返回 MP3 字节。

    Args:
        text: 待合成的文本内容。
        language: 文本语言，用于选择默认声线。
        voice_id: 说话者的专属声线（Edge-TTS 声线名），为空时使用默认声线。

    Raises:
        SynthesisError: 超时、合成异常或没有产生任何音频。
    """
    voice = voice_id or default_voice_for(language)
    try:
        audio = await asyncio.wait_for(_collect_audio(text, voice), timeout=settings.TTS_TIMEOUT)
    except asyncio.TimeoutError as e:
        raise SynthesisError(f"语音合成超时（{settings.TTS_TIMEOUT:.0f}s）") from e
    except Exception as e:
        raise SynthesisError(f"语音合成失败: {e!s}") from e

    if not audio:
        raise SynthesisError("语音合成没有返回音频")
    return audio


async def generate_audio_base64(text: str, language: str = "en", voice_id: str | None = None) -> str:
    """将文本转换为音频并返回 Base64 编码字符串。

    Returns:
        MP3 音频的 Base64 字符串。合成失败时返回空字符串。
    """
    try:
        audio = await synthesize_speech(text, language, voice_id)
    except SynthesisError as e:
        logger.error("TTS 合成失败: %s", e.message)
        return ""
    return base64.b64encode(audio).decode("utf-8")
