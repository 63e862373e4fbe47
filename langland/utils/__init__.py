"""
LangLand 工具模块

通用工具函数
"""

from .logger import setup_logging, StructuredFormatter


def normalize_word(word: str) -> str:
    """单词规范化: 去除首尾空白并转小写"""
    return (word or "").strip().lower()


__all__ = [
    "setup_logging",
    "StructuredFormatter",
    "normalize_word",
]
