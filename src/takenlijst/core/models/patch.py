"""部分更新的字段变体

区分三种语义：未提供（UNSET，保留现值）、设置新值（SET）、显式清空（CLEARED）。
普通 Optional 无法区分"没传"和"传了 null"，因此每个可更新字段都用 Patch 表示。
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class PatchKind(StrEnum):
    UNSET = "unset"
    SET = "set"
    CLEARED = "cleared"


@dataclass(frozen=True)
class Patch(Generic[T]):
    """单字段变更"""

    kind: PatchKind = PatchKind.UNSET
    value: T | None = None

    @classmethod
    def of(cls, value: T) -> "Patch[T]":
        return cls(PatchKind.SET, value)

    @classmethod
    def cleared(cls) -> "Patch[T]":
        return cls(PatchKind.CLEARED)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], name: str) -> "Patch[Any]":
        """从请求 payload 构造：缺失键 -> UNSET，null -> CLEARED，其余 -> SET"""
        if name not in payload:
            return UNSET
        value = payload[name]
        if value is None:
            return cls.cleared()
        return cls.of(value)

    @property
    def is_unset(self) -> bool:
        return self.kind is PatchKind.UNSET

    @property
    def is_set(self) -> bool:
        return self.kind is PatchKind.SET

    @property
    def is_cleared(self) -> bool:
        return self.kind is PatchKind.CLEARED

    @property
    def changed(self) -> bool:
        """SET 或 CLEARED 都视为调用方提交了该字段"""
        return self.kind is not PatchKind.UNSET

    def apply(self, current: T | None) -> T | None:
        """返回应用变更后的值"""
        if self.kind is PatchKind.SET:
            return self.value
        if self.kind is PatchKind.CLEARED:
            return None
        return current


UNSET: Patch[Any] = Patch()
