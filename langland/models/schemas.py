"""
Pydantic 数据模型

响应 data 中携带的结构 (词族信息、词典条目、AI 结果)
线上字段统一使用 camelCase 别名
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .protocol import FamiliarityStatus


class WireModel(BaseModel):
    """线上模型基类: 接受 python 字段名和 camelCase 别名"""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WordFamilyInfo(WireModel):
    """词族信息 (QUERY_WORDS_STATUS 的每一项)"""
    status: FamiliarityStatus
    family_root: str = Field(alias="familyRoot")
    familiarity_level: int = Field(alias="familiarityLevel")


class TagInfo(WireModel):
    """标签信息 (如词频表、考试词表)"""
    id: int
    key: str
    name: str
    description: Optional[str] = None


class Sense(WireModel):
    glosses: List[str] = []
    examples: List[str] = []


class DefinitionEntry(WireModel):
    pos: str
    senses: List[Sense] = []


class ChineseEntry(WireModel):
    """简短中文释义"""
    pos: str
    definitions: List[str] = []


class DictionaryEntry(WireModel):
    """词典条目，source 区分数据库 (db) 与 AI 生成 (ai)"""
    id: int
    word: str
    phonetics: List[str] = []
    audio: List[str] = []
    forms: List[str] = []
    entries: List[DefinitionEntry] = []
    chinese_entries_short: Optional[List[ChineseEntry]] = Field(default=None, alias="chineseEntriesShort")
    source: str = "db"
    tags: List[TagInfo] = []


class AIEnrichmentData(WireModel):
    """AI 单词解析结果"""
    contextual_definitions: List[str] = Field(alias="contextualDefinitions")
    example_sentence: str = Field(default="", alias="exampleSentence")
    synonym: str = ""


class TranslationResult(WireModel):
    """AI 翻译结果"""
    translation: str
    sentence_analysis: Optional[str] = Field(default=None, alias="sentenceAnalysis")


class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str
