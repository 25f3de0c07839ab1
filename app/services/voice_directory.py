"""
app.services.voice_directory
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

声线目录 —— 用户名 → 语音合成声线 ID 的查询表（不区分大小写）。

可以从 JSON 映射文件预加载::

    {"userVoices": {"alice": "en-US-JennyNeural", "Bob": "fr-FR-HenriNeural"}}

参与者加入时若没有自带声线，就通过这里解析。
"""
from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from app.core.logging import get_logger

logger = get_logger(__name__)


class VoiceMapping(BaseModel):
    """声线映射文件的结构。"""

    user_voices: dict[str, str] = Field(default_factory=dict, alias="userVoices")


class VoiceDirectory:
    """内存中的声线目录。"""

    def __init__(self, voices: dict[str, str] | None = None) -> None:
        self._voices: dict[str, str] = {}
        for username, voice_id in (voices or {}).items():
            self.register(username, voice_id)

    @classmethod
    def from_file(cls, path: Path | None) -> VoiceDirectory:
        """从映射文件构造；文件缺失或格式错误时返回空目录并记录警告。"""
        if path is None:
            return cls()
        if not path.exists():
            logger.warning("声线映射文件不存在，使用空目录: %s", path)
            return cls()
        try:
            mapping = VoiceMapping.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, ValidationError) as e:
            logger.warning("声线映射文件解析失败，使用空目录: %s | %s", path, e)
            return cls()

        logger.info("已加载 %d 条声线映射: %s", len(mapping.user_voices), path)
        return cls(mapping.user_voices)

    def register(self, username: str, voice_id: str) -> None:
        self._voices[username.strip().lower()] = voice_id

    async def resolve(self, username: str) -> str | None:
        """按用户名查找声线 ID，找不到返回 None。"""
        return self._voices.get(username.strip().lower())

    def __len__(self) -> int:
        return len(self._voices)
