"""Error kinds for the scoring engine and the result value admin actions return."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class LeagueError(Exception):
    """Base exception for the scoring engine."""

    kind = "error"


class ValidationError(LeagueError):
    """Malformed policy or submission, rejected before any computation runs."""

    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class ComputationError(LeagueError):
    """A non-finite handicap, net score or point value showed up mid-recalculation."""

    kind = "computation"

    def __init__(self, message: str, record: Optional[str] = None) -> None:
        self.record = record
        super().__init__(message)


class ConcurrencyConflict(LeagueError):
    """A submission targets a team+week that is already recorded."""

    kind = "conflict"

    def __init__(self, week_number: int, team_names: list[str]) -> None:
        self.week_number = week_number
        self.team_names = team_names
        super().__init__(
            f"Team(s) already played in Week {week_number}: {', '.join(team_names)}"
        )


class NotFoundError(LeagueError):
    kind = "not_found"


@dataclass(frozen=True)
class ActionResult(Generic[T]):
    """
    Resultado explícito de una acción de administración.

    success=True lleva `data`; success=False lleva `error` y `kind`
    (validation / conflict / computation / not_found).
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: LeagueError) -> "ActionResult":
        return cls(success=False, error=str(exc), kind=exc.kind)
