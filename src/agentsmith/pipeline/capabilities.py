"""Capability catalogue, plan requirement detection and the connected-capability registry."""

import asyncio
import logging
import re
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from agentsmith.db.connection import get_conn
from agentsmith.db.queries import list_connected_services
from agentsmith.errors import CapabilityLookupError
from agentsmith.pipeline.types import CapabilityCheckEntry, Plan

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Capability:
    name: str
    label: str
    icon: str
    connection_method: str
    connect_url: str


CAPABILITY_CATALOGUE: tuple[Capability, ...] = (
    Capability("google-gmail", "Gmail", "\U0001F4E7", "oauth",
               "/api/auth/connect/google?service=google-gmail"),
    Capability("google-sheets", "Google Sheets", "\U0001F4CA", "oauth",
               "/api/auth/connect/google?service=google-sheets"),
    Capability("google-drive", "Google Drive", "\U0001F4C1", "oauth",
               "/api/auth/connect/google?service=google-drive"),
    Capability("google-forms", "Google Forms", "\U0001F4CB", "oauth",
               "/api/auth/connect/google?service=google-forms"),
    Capability("google-calendar", "Google Calendar", "\U0001F4C5", "oauth",
               "/api/auth/connect/google?service=google-calendar"),
    Capability("slack", "Slack", "\U0001F4AC", "oauth", "/api/auth/connect/slack"),
    Capability("discord", "Discord", "\U0001F3AE", "credential",
               "/integrations/connect?service=discord"),
    Capability("github", "GitHub", "\U0001F419", "oauth", "/api/auth/connect/github"),
    Capability("notion", "Notion", "\U0001F4D3", "oauth", "/api/auth/connect/notion"),
    Capability("airtable", "Airtable", "\U0001F5C2️", "oauth",
               "/api/auth/connect/airtable"),
    Capability("openai", "OpenAI", "\U0001F916", "credential",
               "/integrations/connect?service=openai"),
    Capability("twilio", "Twilio (SMS)", "\U0001F4F1", "credential",
               "/integrations/connect?service=twilio"),
)

_CATALOGUE_BY_NAME = {item.name: item for item in CAPABILITY_CATALOGUE}

# Poll trigger type -> capability that must be connected for it to run.
TRIGGER_CAPABILITIES: dict[str, str] = {
    "new-email-received": "google-gmail",
    "new-message-in-slack": "slack",
    "new-discord-message": "discord",
    "new-row-in-google-sheet": "google-sheets",
    "new-github-issue": "github",
    "file-uploaded": "google-drive",
    "new-form-submission": "google-forms",
}

_KEYWORD_CAPABILITIES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"gmail|send.{0,20}email|reply.{0,20}email|read.{0,20}email", re.I),
     "google-gmail"),
    (re.compile(r"google.{0,10}sheet|spreadsheet", re.I), "google-sheets"),
    (re.compile(r"google.{0,10}calendar|calendar.{0,10}event", re.I), "google-calendar"),
    (re.compile(r"google.{0,10}drive|drive.{0,10}file", re.I), "google-drive"),
    (re.compile(r"slack", re.I), "slack"),
    (re.compile(r"discord", re.I), "discord"),
    (re.compile(r"notion", re.I), "notion"),
    (re.compile(r"github|pull.{0,10}request|issue", re.I), "github"),
    (re.compile(r"airtable", re.I), "airtable"),
)


def get_capability(name: str) -> Capability | None:
    return _CATALOGUE_BY_NAME.get(name)


def detect_required_capabilities(plan: Plan) -> list[str]:
    """Capability names a plan needs, trigger-derived first, then keyword hits."""
    required: list[str] = []

    def _add(name: str) -> None:
        if name not in required:
            required.append(name)

    for behaviour in plan.behaviours:
        if behaviour.behaviour_type == "polling" and behaviour.trigger_type:
            name = TRIGGER_CAPABILITIES.get(behaviour.trigger_type)
            if name:
                _add(name)

    parts = [plan.instructions, plan.persona, *(b.description for b in plan.behaviours)]
    text = " ".join(part for part in parts if part)
    for pattern, name in _KEYWORD_CAPABILITIES:
        if pattern.search(text):
            _add(name)
    return required


def is_connected(name: str, connected: Iterable[str]) -> bool:
    # Google sub-capabilities share one OAuth grant.
    google = name.startswith("google-")
    return any(item == name or (google and item.startswith("google-")) for item in connected)


def build_capability_checks(plan: Plan, connected: Iterable[str]) -> list[CapabilityCheckEntry]:
    connected_names = list(connected)
    entries: list[CapabilityCheckEntry] = []
    for name in detect_required_capabilities(plan):
        meta = get_capability(name)
        if meta is None:
            logger.debug("capability not in catalogue name=%s", name)
            continue
        entries.append(
            CapabilityCheckEntry(
                name=meta.name,
                label=meta.label,
                icon=meta.icon,
                required=True,
                connected=is_connected(meta.name, connected_names),
                connect_url=meta.connect_url,
                connection_method=meta.connection_method,
            )
        )
    return entries


def missing_capabilities(entries: Iterable[CapabilityCheckEntry]) -> list[CapabilityCheckEntry]:
    return [entry for entry in entries if entry.required and not entry.connected]


class CapabilityRegistry(Protocol):
    async def connected(self, principal_id: str) -> list[str]: ...


class SqliteCapabilityRegistry:
    """Reads connected capabilities from the ``integrations`` table."""

    async def connected(self, principal_id: str) -> list[str]:
        try:
            return await asyncio.to_thread(self._load, principal_id)
        except sqlite3.Error as exc:
            raise CapabilityLookupError(f"capability lookup failed: {exc}") from exc

    @staticmethod
    def _load(principal_id: str) -> list[str]:
        with get_conn() as conn:
            return list_connected_services(conn, principal_id)
