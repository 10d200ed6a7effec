from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 style description of a rejected action."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code

    def problem(self, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=self.type,
            title=self.title,
            detail=self.detail,
            instance=instance,
            code=self.code,
        )


class ActionRejected(DomainException):
    """A scorer action that must not be appended to the event log."""


class InvalidEvent(ActionRejected):
    def __init__(self, detail: str) -> None:
        super().__init__(
            title="Invalid event",
            detail=detail,
            code="event_invalid",
        )


class LineupRequired(ActionRejected):
    def __init__(self, set_number: int) -> None:
        super().__init__(
            title="Lineup required",
            detail=f"set {set_number} has no lineup yet",
            code="lineup_required",
        )


class SubstitutionRejected(ActionRejected):
    def __init__(self, reason: str, code: str = "substitution_invalid") -> None:
        super().__init__(
            title="Substitution rejected",
            detail=reason,
            code=code,
        )
        self.reason = reason


class TimeoutLimitReached(ActionRejected):
    def __init__(self, team: str, set_number: int) -> None:
        super().__init__(
            title="Timeout limit reached",
            detail=f"{team} has no timeouts left in set {set_number}",
            code="timeout_limit_reached",
        )


class NoMatchLoaded(DomainException):
    def __init__(self) -> None:
        super().__init__(
            title="No match loaded",
            detail="load a match before recording events",
            code="match_not_loaded",
        )
