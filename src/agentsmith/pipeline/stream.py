"""Newline-delimited JSON event stream shared by the negotiate and build phases.

One producer (a pipeline task) writes events through ``EventStreamWriter``;
one consumer (the HTTP response) drains ``lines()``. Every event is a single
JSON object with a ``type`` discriminator, one per line.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Iterable
from typing import Any

from agentsmith.pipeline.types import BUILD_STAGE_STATUSES, BuildStage, BuildStageStatus

logger = logging.getLogger(__name__)

_CLOSED = object()


def encode_event(event: dict[str, Any]) -> str:
    return json.dumps(event, ensure_ascii=False, separators=(",", ":")) + "\n"


class EventStreamWriter:
    """Frames typed events onto a single outbound queue.

    Events are pushed as soon as they are emitted. ``close()`` is idempotent;
    anything emitted after it is dropped and logged. With ``record=True`` every
    accepted event is also kept on ``emitted``.
    """

    def __init__(self, stream_id: str = "", *, record: bool = False) -> None:
        self.stream_id = stream_id
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._record = record
        self.emitted: list[dict[str, Any]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def _emit(self, event: dict[str, Any]) -> None:
        if self._closed:
            logger.debug(
                "event dropped after close stream_id=%s type=%s", self.stream_id, event["type"]
            )
            return
        if self._record:
            self.emitted.append(event)
        self._queue.put_nowait(encode_event(event))

    def text(self, delta: str) -> None:
        if delta:
            self._emit({"type": "text_delta", "delta": delta})

    def text_done(self) -> None:
        self._emit({"type": "text_done"})

    def say(self, message: str) -> None:
        """Stream one assistant line word by word, then mark it finished."""
        words = message.split(" ")
        for index, word in enumerate(words):
            self.text(word if index == len(words) - 1 else f"{word} ")
        self.text_done()

    def card(self, card_type: str, **fields: Any) -> None:
        self._emit({"type": card_type, **fields})

    def build_stage(self, label: str, status: BuildStageStatus) -> None:
        if status not in BUILD_STAGE_STATUSES:
            raise ValueError(f"unknown build stage status: {status}")
        self._emit({"type": "build_stage", "stage": label, "status": status})

    def complete(self, agent_id: str, summary: str) -> None:
        self._emit({"type": "build_complete", "agentId": agent_id, "summary": summary})

    def error(self, message: str) -> None:
        self._emit({"type": "error", "message": message})

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def lines(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield str(item)


def parse_events(lines: Iterable[str]) -> list[dict[str, Any]]:
    """Decode a captured NDJSON body (or an iterable of its lines)."""
    events: list[dict[str, Any]] = []
    for line in lines:
        line = line.strip()
        if not line:
            continue
        events.append(json.loads(line))
    return events


class BuildProgress:
    """Client-side view of ``build_stage`` events: one row per label.

    A repeated event for a known label updates that row in place; new labels
    are appended, so iteration order is first-seen order.
    """

    def __init__(self) -> None:
        self._stages: dict[str, BuildStage] = {}

    def apply(self, event: dict[str, Any]) -> None:
        if event.get("type") != "build_stage":
            return
        label = str(event["stage"])
        status = event["status"]
        if label in self._stages:
            self._stages[label].status = status
        else:
            self._stages[label] = BuildStage(label=label, status=status)

    def apply_all(self, events: Iterable[dict[str, Any]]) -> "BuildProgress":
        for event in events:
            self.apply(event)
        return self

    @property
    def stages(self) -> list[BuildStage]:
        return list(self._stages.values())

    def status_of(self, label: str) -> BuildStageStatus | None:
        stage = self._stages.get(label)
        return stage.status if stage is not None else None
