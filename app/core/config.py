"""
app.core.config
~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（app/ 的上一级）
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Polyglot Meeting Room", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── API Keys ──────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(..., description="Google Gemini API Key（会议纪要生成）")
    DEEPGRAM_API_KEY: str = Field(default="", description="Deepgram API Key（按键说话转写）")

    # ── 房间 ──────────────────────────────────────────────────────────
    ROOM_MESSAGE_LIMIT: int = Field(default=100, description="每个房间保留的最近消息条数")
    SPEAKING_WORD_THRESHOLD: int = Field(
        default=2,
        description="识别文本达到多少个词后才广播「正在说话」",
    )

    # ── 翻译 ──────────────────────────────────────────────────────────
    TRANSLATE_API_URL: str = Field(
        default="https://translate.googleapis.com/translate_a/single",
        description="翻译服务地址",
    )
    TRANSLATE_TIMEOUT: float = Field(default=5.0, description="单次翻译请求超时（秒）")
    TRANSLATE_MAX_RETRIES: int = Field(default=2, description="翻译失败后的最大重试次数")
    TRANSLATE_BACKOFF_BASE: float = Field(default=1.0, description="指数退避的初始等待（秒）")
    TRANSLATE_RATE_WINDOW: float = Field(default=60.0, description="翻译计数窗口长度（秒）")
    TRANSLATE_RATE_THRESHOLD: int = Field(default=50, description="窗口内超过该请求数后开始节流")
    TRANSLATE_THROTTLE_DELAY: float = Field(default=1.0, description="节流时插入的固定延迟（秒）")

    # ── 会议纪要（LLM） ────────────────────────────────────────────────
    GEMINI_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Gemini 会议纪要模型名称",
    )
    MEETING_NOTES_MESSAGE_THRESHOLD: int = Field(
        default=10,
        description="每累计多少条消息自动生成一次会议纪要",
    )
    SUMMARY_TIMEOUT: float = Field(default=30.0, description="纪要生成请求超时（秒）")
    SUMMARY_MAX_TOKENS: int = Field(default=1000, description="纪要生成最大输出 token 数")

    # ── 语音转写 / 合成 ─────────────────────────────────────────────────
    DEEPGRAM_API_URL: str = Field(
        default="https://api.deepgram.com/v1/listen",
        description="Deepgram 预录音频转写地址",
    )
    DEEPGRAM_MODEL: str = Field(default="nova-2", description="Deepgram 转写模型")
    TRANSCRIBE_TIMEOUT: float = Field(default=15.0, description="转写请求超时（秒）")
    TTS_VOICE: str = Field(
        default="en-US-AriaNeural",
        description="Edge-TTS 默认语音模型（无克隆声线且语言无映射时使用）",
    )
    TTS_TIMEOUT: float = Field(default=15.0, description="语音合成超时（秒）")
    VOICE_MAPPING_FILE: str = Field(
        default="",
        description="用户名 → 声线 ID 映射 JSON 文件路径（相对项目根目录，可为空）",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5,
        description="同一连接两次文字消息之间的最小间隔（秒）",
    )
    WS_QUEUE_SIZE: int = Field(default=50, description="每个 WebSocket 连接的待处理事件队列长度")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def voice_mapping_path(self) -> Path | None:
        """声线映射文件的绝对路径，未配置时为 None。"""
        if not self.VOICE_MAPPING_FILE:
            return None
        return PROJECT_ROOT / self.VOICE_MAPPING_FILE


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


# 保留向后兼容的全局变量
settings: Settings = get_settings()
