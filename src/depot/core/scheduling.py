"""Scheduled maintenance of repositories.

A repository may carry a ``scheduling`` specification and a
``scheduling_action`` list. The specification selects the trigger::

    cron:0 0 * * * ?            cron expression
    at:2026-01-01T00:00:00Z     single run at an ISO-8601 timestamp
    0 0 * * * ?                 bare cron expression (no prefix)

The action list is a comma separated sequence of ``purge``, ``delete`` and
``copy <destination>``, executed in order each time the job fires.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional

from depot.core.errors import DepotError, InvalidScheduleError
from depot.entities import Repository
from depot.observability.logging import get_logger

if TYPE_CHECKING:
    from depot.core.repository import RepositoryManager

logger = get_logger(__name__)

JOB_PREFIX = "depot-repository-"


class TriggerKind(str, Enum):
    CRON = "cron"
    AT = "at"
    BARE_CRON = "bare_cron"


class ActionKind(str, Enum):
    PURGE = "purge"
    DELETE = "delete"
    COPY = "copy"


@dataclass(frozen=True)
class ScheduleTrigger:
    kind: TriggerKind
    expression: str
    at: Optional[datetime] = None


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    destination: Optional[str] = None


@dataclass
class ActionResult:
    """Outcome of one executed action."""

    action: Action
    success: bool
    error: Optional[str] = None
    detail: Optional[Any] = None


def parse_schedule(spec: str) -> ScheduleTrigger:
    """Parse a scheduling specification.

    The prefix is split off at the first ``:`` only, so ``at:`` timestamps
    keep their time component.

    Raises:
        InvalidScheduleError: On an unknown prefix, an empty expression or an
            unparseable timestamp
    """
    if spec is None or not spec.strip():
        raise InvalidScheduleError("Scheduling definition is empty")
    spec = spec.strip()

    prefix, sep, expression = spec.partition(":")
    if not sep:
        return ScheduleTrigger(TriggerKind.BARE_CRON, spec)

    expression = expression.strip()
    if not expression:
        raise InvalidScheduleError(f"Scheduling definition has no expression: {spec}")

    prefix = prefix.strip().lower()
    if prefix == "cron":
        return ScheduleTrigger(TriggerKind.CRON, expression)
    if prefix == "at":
        try:
            at = datetime.fromisoformat(expression)
        except ValueError as e:
            raise InvalidScheduleError(f"Invalid scheduling timestamp: {expression}", e) from e
        return ScheduleTrigger(TriggerKind.AT, expression, at)
    raise InvalidScheduleError(f"Unknown scheduling definition: {spec}")


def parse_actions(spec: Optional[str]) -> list[Action]:
    """Parse a scheduling action list.

    Unknown tokens and malformed ``copy`` tokens are logged and skipped.
    """
    actions: list[Action] = []
    if not spec:
        return actions

    for raw in spec.split(","):
        token = raw.strip()
        if not token:
            continue
        lowered = token.lower()
        if lowered == "purge":
            actions.append(Action(ActionKind.PURGE))
        elif lowered == "delete":
            actions.append(Action(ActionKind.DELETE))
        elif "copy" in lowered:
            fields = token.split()
            if len(fields) != 2:
                logger.error("invalid_copy_action", action=token)
                continue
            actions.append(Action(ActionKind.COPY, fields[1]))
        else:
            logger.warning("unknown_scheduling_action", action=token)
    return actions


class SchedulingPolicy:
    """Executes scheduled actions against a repository manager."""

    def __init__(self, manager: "RepositoryManager"):
        self.manager = manager

    @staticmethod
    def job_id(name: str) -> str:
        return JOB_PREFIX + name

    def job_for(self, repository: Repository) -> Callable[[], list[ActionResult]]:
        """Build the scheduler callback of a repository.

        The action list is read from the registry each time the job fires.
        """
        name = repository.name

        def run() -> list[ActionResult]:
            current = self.manager.repository(name)
            if current is None:
                logger.warning("scheduled_repository_missing", name=name)
                return []
            return self.execute(name, parse_actions(current.scheduling_action))

        return run

    def execute(self, name: str, actions: list[Action]) -> list[ActionResult]:
        """Run actions in order against a repository.

        A failing action is logged and recorded; later actions still run.

        Args:
            name: Repository name
            actions: Parsed actions

        Returns:
            One result per action
        """
        logger.info("scheduled_actions_started", name=name, actions=[a.kind.value for a in actions])
        results: list[ActionResult] = []
        for action in actions:
            try:
                if action.kind == ActionKind.PURGE:
                    detail = self.manager.purge(name)
                elif action.kind == ActionKind.DELETE:
                    detail = self.manager.remove(name, storage_cleanup=False)
                else:
                    detail = self.manager.copy(name, action.destination)
            except (DepotError, OSError) as e:
                logger.error(
                    "scheduled_action_failed",
                    name=name,
                    action=action.kind.value,
                    destination=action.destination,
                    error=str(e),
                )
                results.append(ActionResult(action, False, error=str(e)))
                continue
            results.append(ActionResult(action, True, detail=detail))

        logger.info(
            "scheduled_actions_completed",
            name=name,
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results
