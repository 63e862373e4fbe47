"""
数据库模型定义

使用 SQLAlchemy 2.0 异步模式
词族 (WordFamily) 是熟练度追踪的基本单位，单词 (Word) 是其表面形式
"""

from datetime import datetime
from typing import Optional, List
from sqlalchemy import (
    String, Integer, SmallInteger, Text, DateTime, ForeignKey, Table, Column,
    Index, JSON, UniqueConstraint
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from .protocol import FamiliarityStatus


class Base(DeclarativeBase):
    """SQLAlchemy 基类"""
    pass


def ValueEnum(enum_class):
    """
    创建使用 enum value (而非 name) 存储的 SQLAlchemy Enum

    Python Enum:  LEARNING = "learning"
    默认存储:     "LEARNING" (name)
    此函数存储:   "learning" (value)
    """
    return SAEnum(
        enum_class,
        values_callable=lambda x: [e.value for e in x]
    )


# 词族 - 标签 多对多
family_tags = Table(
    "family_tags",
    Base.metadata,
    Column("family_id", Integer, ForeignKey("word_families.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================
# 词族表
# ============================================
class WordFamily(Base):
    """
    词族表 - 一个词根及其屈折/派生形式

    例如:
    run (root_word)
    ├── run
    ├── running
    ├── ran
    └── runner
    """
    __tablename__ = "word_families"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    root_word: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    words: Mapped[List["Word"]] = relationship(back_populates="family")
    tags: Mapped[List["Tag"]] = relationship(secondary=family_tags, back_populates="families")

    def __repr__(self) -> str:
        return f"<WordFamily(id={self.id}, root_word='{self.root_word}')>"


class Word(Base):
    """单词表 - 小写表面形式，唯一属于一个词族"""
    __tablename__ = "words"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    family_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("word_families.id", ondelete="RESTRICT"), nullable=False
    )

    family: Mapped["WordFamily"] = relationship(back_populates="words")

    __table_args__ = (
        Index("idx_words_family", "family_id"),
    )


class Tag(Base):
    """标签表 (词频表、考试词表等)"""
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    families: Mapped[List["WordFamily"]] = relationship(secondary=family_tags, back_populates="tags")


# ============================================
# 用户词族熟练度
# ============================================
class UserFamilyStatus(Base):
    """
    用户词族熟练度表

    status 列始终由 familiarity_level 投影写入
    """
    __tablename__ = "user_family_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    family_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("word_families.id", ondelete="RESTRICT"), nullable=False
    )

    status: Mapped[FamiliarityStatus] = mapped_column(
        ValueEnum(FamiliarityStatus), default=FamiliarityStatus.UNKNOWN
    )
    familiarity_level: Mapped[int] = mapped_column(SmallInteger, default=0)
    lookup_count: Mapped[int] = mapped_column(Integer, default=0)
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    family: Mapped["WordFamily"] = relationship()

    __table_args__ = (
        UniqueConstraint("user_id", "family_id", name="uk_user_family"),
        Index("idx_user_family_user", "user_id"),
    )


# ============================================
# 词典
# ============================================
class DictionaryEntry(Base):
    """词典条目"""
    __tablename__ = "dictionary_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    word: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    phonetics: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    audio: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    forms: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    chinese_entries_short: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    entries: Mapped[List["DefinitionEntry"]] = relationship(
        back_populates="dictionary_entry", order_by="DefinitionEntry.id"
    )


class DefinitionEntry(Base):
    """词性释义"""
    __tablename__ = "definition_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pos: Mapped[str] = mapped_column(String(30), nullable=False)
    dictionary_entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dictionary_entries.id", ondelete="CASCADE"), nullable=False
    )

    dictionary_entry: Mapped["DictionaryEntry"] = relationship(back_populates="entries")
    senses: Mapped[List["Sense"]] = relationship(back_populates="definition_entry", order_by="Sense.id")


class Sense(Base):
    """义项"""
    __tablename__ = "senses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    glosses: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    examples: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    definition_entry_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("definition_entries.id", ondelete="CASCADE"), nullable=False
    )

    definition_entry: Mapped["DefinitionEntry"] = relationship(back_populates="senses")
