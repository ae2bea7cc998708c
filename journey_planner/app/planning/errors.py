"""Typed planning failures."""

from journey_planner.app.models.common import FAILURE_MESSAGES, FailureReason


class PlanningError(Exception):
    """Domain failure raised by the planner; the reason is persisted on the job."""

    def __init__(self, reason: FailureReason, message: str | None = None) -> None:
        self.reason = reason
        self.message = message or FAILURE_MESSAGES[reason]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"PlanningError(reason={self.reason.value!r}, message={self.message!r})"
