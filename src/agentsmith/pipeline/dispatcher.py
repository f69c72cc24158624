"""Routes each persisted behaviour to exactly one trigger subsystem.

``time-based`` behaviours go to the schedule registrar, ``periodic-poll``
behaviours get a poll descriptor, ``inbound-event`` behaviours need no
registration. Anything else is reported as a "no recognized trigger" warning.
``deactivate`` is the inverse of ``dispatch`` and both are safe to repeat.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from agentsmith.agents.store import AgentStore
from agentsmith.errors import AgentSmithError, DispatchError
from agentsmith.pipeline.types import BEHAVIOUR_TRIGGER_KINDS, TriggerKind
from agentsmith.scheduler.cron import next_run_after

logger = logging.getLogger(__name__)

NO_RECOGNIZED_TRIGGER = "no recognized trigger"


def classify(behaviour_type: str) -> TriggerKind | None:
    return BEHAVIOUR_TRIGGER_KINDS.get(behaviour_type)


@dataclass(slots=True)
class DispatchResult:
    behaviour_id: str
    kind: TriggerKind | None
    registered: bool = False
    created: bool = False
    next_run_at: str | None = None
    warning: str | None = None


class TriggerRegistrar(Protocol):
    async def register(self, behaviour: dict[str, Any]) -> DispatchResult: ...

    async def unregister(self, behaviour: dict[str, Any]) -> None: ...


class ScheduleRegistrar:
    """Computes and persists the next run of a time-based behaviour."""

    def __init__(
        self, store: AgentStore, *, timezone: str = "UTC", lookahead_days: int = 366
    ) -> None:
        self.store = store
        self.timezone = timezone
        self.lookahead_days = lookahead_days

    def next_run(self, cron_expr: str, now: datetime | None = None) -> str | None:
        try:
            moment = next_run_after(
                cron_expr,
                now or datetime.now(UTC),
                timezone=self.timezone,
                lookahead_days=self.lookahead_days,
            )
        except (ValueError, OverflowError) as exc:
            logger.warning("cannot compute next run cron=%r: %s", cron_expr, exc)
            return None
        return moment.isoformat() if moment is not None else None

    async def register(self, behaviour: dict[str, Any]) -> DispatchResult:
        result = DispatchResult(behaviour_id=behaviour["id"], kind="time-based")
        cron_expr = behaviour.get("schedule_cron")
        if not cron_expr:
            result.warning = "time-based behaviour has no schedule"
            logger.warning(
                "time-based behaviour without cron behaviour_id=%s", behaviour["id"]
            )
            return result
        next_run_at = self.next_run(cron_expr)
        if next_run_at is None:
            result.warning = f"no next run computable for {cron_expr!r}"
            logger.warning(
                "no next run for schedule behaviour_id=%s cron=%r", behaviour["id"], cron_expr
            )
        _, created = await self.store.upsert_schedule(
            agent_id=behaviour["agent_id"],
            behaviour_id=behaviour["id"],
            cron_expr=cron_expr,
            timezone=self.timezone,
            next_run_at=next_run_at,
        )
        result.registered = True
        result.created = created
        result.next_run_at = next_run_at
        return result

    async def unregister(self, behaviour: dict[str, Any]) -> None:
        await self.store.set_schedule_enabled(behaviour["id"], False)


class PollRegistrar:
    """Maintains the poll descriptor an external polling worker consumes."""

    def __init__(self, store: AgentStore, *, poll_interval_seconds: int = 60) -> None:
        self.store = store
        self.poll_interval_seconds = poll_interval_seconds

    async def register(self, behaviour: dict[str, Any]) -> DispatchResult:
        result = DispatchResult(behaviour_id=behaviour["id"], kind="periodic-poll")
        trigger_type = behaviour.get("trigger_type")
        if not trigger_type:
            raise DispatchError(f"polling behaviour {behaviour['id']} has no trigger type")
        config = {
            **(behaviour.get("config") or {}),
            "agentId": behaviour["agent_id"],
            "behaviourId": behaviour["id"],
            "userId": behaviour["user_id"],
        }
        _, created = await self.store.upsert_poll_trigger(
            agent_id=behaviour["agent_id"],
            behaviour_id=behaviour["id"],
            trigger_type=trigger_type,
            config=config,
            poll_interval=self.poll_interval_seconds,
        )
        result.registered = True
        result.created = created
        return result

    async def unregister(self, behaviour: dict[str, Any]) -> None:
        await self.store.set_poll_trigger_enabled(behaviour["id"], False)


class TriggerDispatcher:
    def __init__(self, schedules: TriggerRegistrar, polls: TriggerRegistrar) -> None:
        self.schedules = schedules
        self.polls = polls

    @classmethod
    def from_settings(cls, store: AgentStore, settings: Any) -> "TriggerDispatcher":
        return cls(
            ScheduleRegistrar(
                store,
                timezone=settings.schedule_timezone,
                lookahead_days=settings.schedule_lookahead_days,
            ),
            PollRegistrar(store, poll_interval_seconds=settings.poll_interval_seconds),
        )

    async def dispatch(self, behaviour: dict[str, Any]) -> DispatchResult:
        kind = classify(behaviour["behaviour_type"])
        if kind is None:
            logger.warning(
                "%s behaviour_id=%s behaviour_type=%s",
                NO_RECOGNIZED_TRIGGER,
                behaviour["id"],
                behaviour["behaviour_type"],
            )
            return DispatchResult(
                behaviour_id=behaviour["id"], kind=None, warning=NO_RECOGNIZED_TRIGGER
            )
        if kind == "inbound-event":
            # The inbound route checks agent status itself at request time.
            return DispatchResult(behaviour_id=behaviour["id"], kind=kind)
        registrar = self.schedules if kind == "time-based" else self.polls
        try:
            result = await registrar.register(behaviour)
        except DispatchError:
            raise
        except AgentSmithError as exc:
            raise DispatchError(f"{kind} registration failed: {exc}") from exc
        logger.info(
            "behaviour dispatched behaviour_id=%s kind=%s created=%s",
            behaviour["id"],
            kind,
            result.created,
        )
        return result

    async def deactivate(self, behaviour: dict[str, Any]) -> DispatchResult:
        kind = classify(behaviour["behaviour_type"])
        result = DispatchResult(behaviour_id=behaviour["id"], kind=kind)
        if kind == "time-based":
            await self.schedules.unregister(behaviour)
        elif kind == "periodic-poll":
            await self.polls.unregister(behaviour)
        elif kind is None:
            result.warning = NO_RECOGNIZED_TRIGGER
            logger.warning(
                "%s on deactivate behaviour_id=%s", NO_RECOGNIZED_TRIGGER, behaviour["id"]
            )
        return result
