"""Result envelope returned by ``operate``."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from castor.history import HistoryItem
    from castor.providers.models import UsageItem


class OperateStatus(str, Enum):
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class OperateError:
    """Diagnostic attached to an incomplete result."""

    status: int
    title: str
    detail: str


@dataclass(frozen=True)
class OperateResult:
    """Outcome of one ``operate`` call.

    ``content`` is the final text, or the validated structured value when a
    format was requested. ``usage`` holds one summed item per attempted
    provider. ``output`` lists the history items produced during this call.
    """

    content: Any
    history: list[HistoryItem]
    usage: list[UsageItem]
    status: OperateStatus
    provider: str
    model: str
    fallback_used: bool = False
    fallback_attempts: int = 1
    responses: list[Any] = field(default_factory=list)
    output: list[HistoryItem] = field(default_factory=list)
    error: OperateError | None = None
    reasoning: list[str] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status is OperateStatus.COMPLETED

    @property
    def total_usage(self) -> int:
        return sum(item.total for item in self.usage)
