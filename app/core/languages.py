"""
app.core.languages
~~~~~~~~~~~~~~~~~~

语言标识归一化。

客户端传来的语言标识形式五花八门：裸 ISO 代码（``fr``）、带地区的变体
（``en-US``）、完整显示名（``French (General)``），以及自动识别哨兵值
``multi``。``canonicalize()`` 把它们统一映射为翻译用的短代码和人类可读的显示名。

查找顺序:
  1. 静态表精确匹配（代码或英文名，大小写不敏感）
  2. 去掉 ``-`` 之后的地区后缀再查
  3. 去掉括号限定语再查
  4. 都不命中时原样返回（代码与显示名均为输入本身）

``multi`` 的短代码为 ``en``（翻译方向需要一个确定的枢轴语言），
但显示名保留为 ``Multilingual``。
"""
from __future__ import annotations

from dataclasses import dataclass

AUTO_DETECT: str = "multi"
PIVOT_LANGUAGE: str = "en"

# 短代码 → 显示名
LANGUAGE_NAMES: dict[str, str] = {
    "ar": "Arabic",
    "bg": "Bulgarian",
    "zh": "Chinese",
    "cs": "Czech",
    "da": "Danish",
    "nl": "Dutch",
    "en": "English",
    "et": "Estonian",
    "fi": "Finnish",
    "fr": "French",
    "de": "German",
    "el": "Greek",
    "hi": "Hindi",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "lv": "Latvian",
    "lt": "Lithuanian",
    "ms": "Malay",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "es": "Spanish",
    "sv": "Swedish",
    "th": "Thai",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
}

# 小写键 → 短代码：代码本身 + 英文名
_LOOKUP: dict[str, str] = {
    **{code: code for code in LANGUAGE_NAMES},
    **{name.lower(): code for code, name in LANGUAGE_NAMES.items()},
}


@dataclass(frozen=True)
class LanguageInfo:
    """归一化结果。

    Attributes:
        short_code: 翻译使用的短代码（如 ``en``）。
        display_name: 人类可读名称（如 ``English``）。
    """

    short_code: str
    display_name: str


def _lookup(key: str) -> LanguageInfo | None:
    code = _LOOKUP.get(key)
    if code is None:
        return None
    return LanguageInfo(short_code=code, display_name=LANGUAGE_NAMES[code])


def canonicalize(code: str) -> LanguageInfo:
    """将任意语言标识归一化为短代码 + 显示名。对所有字符串输入都有定义，不会抛异常。"""
    key = (code or "").strip().lower()

    if key == AUTO_DETECT:
        return LanguageInfo(short_code=PIVOT_LANGUAGE, display_name="Multilingual")

    info = _lookup(key)
    if info is not None:
        return info

    if "-" in key:
        info = _lookup(key.split("-", 1)[0].strip())
        if info is not None:
            return info

    if "(" in key:
        info = _lookup(key.split("(", 1)[0].strip())
        if info is not None:
            return info

    return LanguageInfo(short_code=code, display_name=code)


def short_code(code: str) -> str:
    """``canonicalize(code).short_code`` 的简写。"""
    return canonicalize(code).short_code


def display_name(code: str) -> str:
    """``canonicalize(code).display_name`` 的简写。"""
    return canonicalize(code).display_name


def same_language(a: str, b: str) -> bool:
    """两个语言标识归一化后是否指向同一种语言。"""
    return short_code(a) == short_code(b)
