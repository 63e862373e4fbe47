"""
词族熟练度状态模型

纯状态转换逻辑，不做任何 I/O

熟练度等级 0-7，状态是等级的粗粒度投影:
- 0     -> unknown
- 1..6  -> learning
- 7     -> known

状态只由等级推导，不单独存储，因此两者不会失去同步。
"""

import time
from dataclasses import dataclass, replace
from typing import Optional

from ..models.protocol import FamiliarityStatus
from ..models.response import ValidationError

MIN_LEVEL = 0
MAX_LEVEL = 7

# 只设置状态时对应的代表等级
LEARNING_DEFAULT_LEVEL = 1
LEARNING_MAX_LEVEL = MAX_LEVEL - 1


def validate_level(level: int) -> int:
    """校验熟练度等级范围"""
    if isinstance(level, bool) or not isinstance(level, int):
        raise ValidationError(f"熟练度必须是整数: {level}")
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError(f"熟练度必须在 {MIN_LEVEL}-{MAX_LEVEL} 之间: {level}")
    return level


def status_for_level(level: int) -> FamiliarityStatus:
    """等级 -> 状态投影 (全函数、单调)"""
    validate_level(level)
    if level == MIN_LEVEL:
        return FamiliarityStatus.UNKNOWN
    if level == MAX_LEVEL:
        return FamiliarityStatus.KNOWN
    return FamiliarityStatus.LEARNING


@dataclass(frozen=True)
class FamiliarityRecord:
    """某个词族的熟练度记录"""
    family_id: int
    familiarity_level: int = MIN_LEVEL
    lookup_count: int = 0
    updated_at: float = 0.0

    def __post_init__(self):
        validate_level(self.familiarity_level)

    @property
    def status(self) -> FamiliarityStatus:
        return status_for_level(self.familiarity_level)

    @classmethod
    def empty(cls, family_id: int) -> "FamiliarityRecord":
        """未记录的词族视为陌生"""
        return cls(family_id=family_id)


def resolve_level(
    current_level: int,
    status: Optional[FamiliarityStatus] = None,
    familiarity_level: Optional[int] = None,
) -> int:
    """
    根据 (status?, familiarityLevel?) 计算新的熟练度等级

    - 只给等级: 校验后直接使用
    - 只给状态: unknown -> 0, known -> 7,
      learning -> 保留当前进度 (1..6)，当前为 7 时降为 6，否则为 1
    - 两者都给: 等级的投影必须与状态一致
    - 都不给: ValidationError
    """
    if status is None and familiarity_level is None:
        raise ValidationError("status 和 familiarityLevel 至少需要提供一个")

    if familiarity_level is not None:
        validate_level(familiarity_level)
        if status is not None and status_for_level(familiarity_level) != status:
            raise ValidationError(
                f"熟练度 {familiarity_level} 与状态 {status.value} 不一致"
            )
        return familiarity_level

    if status == FamiliarityStatus.UNKNOWN:
        return MIN_LEVEL
    if status == FamiliarityStatus.KNOWN:
        return MAX_LEVEL

    # learning
    if current_level >= MAX_LEVEL:
        return LEARNING_MAX_LEVEL
    if current_level > MIN_LEVEL:
        return current_level
    return LEARNING_DEFAULT_LEVEL


def apply_update(
    record: FamiliarityRecord,
    status: Optional[FamiliarityStatus] = None,
    familiarity_level: Optional[int] = None,
    now: Optional[float] = None,
) -> FamiliarityRecord:
    """显式更新 (UPDATE_WORD_STATUS)"""
    level = resolve_level(record.familiarity_level, status, familiarity_level)
    return replace(
        record,
        familiarity_level=level,
        updated_at=now if now is not None else time.time(),
    )


def increment(record: FamiliarityRecord, now: Optional[float] = None) -> FamiliarityRecord:
    """提升一级，上限 7，不会降低等级"""
    return replace(
        record,
        familiarity_level=min(MAX_LEVEL, record.familiarity_level + 1),
        updated_at=now if now is not None else time.time(),
    )


def ignore(record: FamiliarityRecord, now: Optional[float] = None) -> FamiliarityRecord:
    """忽略 = 直接标记为已掌握"""
    if record.familiarity_level == MAX_LEVEL:
        return record
    return replace(
        record,
        familiarity_level=MAX_LEVEL,
        updated_at=now if now is not None else time.time(),
    )


def record_lookup(record: FamiliarityRecord) -> FamiliarityRecord:
    """仅增加查词次数"""
    return replace(record, lookup_count=record.lookup_count + 1)


def merge(a: FamiliarityRecord, b: FamiliarityRecord) -> FamiliarityRecord:
    """
    合并缓存与持久化层不一致的两份记录

    最后写入者胜出 (updated_at)；时间相同时取较高等级，
    查词次数取较大值。
    """
    if a.family_id != b.family_id:
        raise ValueError(f"无法合并不同词族的记录: {a.family_id} != {b.family_id}")

    if a.updated_at != b.updated_at:
        winner = a if a.updated_at > b.updated_at else b
    else:
        winner = a if a.familiarity_level >= b.familiarity_level else b

    lookup_count = max(a.lookup_count, b.lookup_count)
    if winner.lookup_count == lookup_count:
        return winner
    return replace(winner, lookup_count=lookup_count)
