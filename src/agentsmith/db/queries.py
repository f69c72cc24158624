"""Core query helpers used by routes, the build orchestrator and the dispatcher."""

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

from agentsmith.ids import new_id

AGENT_STATUSES = ("deploying", "active", "paused", "archived")


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _decode_config(raw: object) -> dict[str, Any]:
    if not isinstance(raw, str) or not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def ensure_user(conn: sqlite3.Connection, external_id: str) -> str:
    row = conn.execute("SELECT id FROM users WHERE external_id=?", (external_id,)).fetchone()
    if row:
        return str(row["id"])
    user_id = new_id("usr")
    conn.execute(
        "INSERT INTO users(id, external_id, role, created_at) VALUES(?,?,?,?)",
        (user_id, external_id, "user", now_iso()),
    )
    return user_id


# Capabilities


def list_connected_services(conn: sqlite3.Connection, user_id: str) -> list[str]:
    rows = conn.execute(
        "SELECT service_name FROM integrations WHERE user_id=? ORDER BY service_name",
        (user_id,),
    ).fetchall()
    return [str(row["service_name"]) for row in rows if row["service_name"]]


def connect_service(conn: sqlite3.Connection, user_id: str, service_name: str) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO integrations(user_id, service_name, connected_at) VALUES(?,?,?)",
        (user_id, service_name, now_iso()),
    )


def disconnect_service(conn: sqlite3.Connection, user_id: str, service_name: str) -> bool:
    cursor = conn.execute(
        "DELETE FROM integrations WHERE user_id=? AND service_name=?",
        (user_id, service_name),
    )
    return cursor.rowcount > 0


# Agents


def _agent_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "user_id": str(row["user_id"]),
        "name": str(row["name"]),
        "description": row["description"],
        "persona": row["persona"],
        "instructions": str(row["instructions"]),
        "status": str(row["status"]),
        "avatar_emoji": str(row["avatar_emoji"]),
        "model": str(row["model"]),
        "max_steps": int(row["max_steps"]),
        "created_at": str(row["created_at"]),
        "updated_at": str(row["updated_at"]),
    }


def insert_agent(
    conn: sqlite3.Connection,
    *,
    user_id: str,
    name: str,
    description: str,
    persona: str | None,
    instructions: str,
    avatar_emoji: str,
    model: str,
    max_steps: int,
) -> dict[str, Any]:
    agent_id = new_id("agt")
    stamp = now_iso()
    conn.execute(
        (
            "INSERT INTO agents("
            "id, user_id, name, description, persona, instructions, status, "
            "avatar_emoji, model, max_steps, created_at, updated_at"
            ") VALUES(?,?,?,?,?,?,?,?,?,?,?,?)"
        ),
        (
            agent_id,
            user_id,
            name,
            description,
            persona,
            instructions,
            "deploying",
            avatar_emoji,
            model,
            max_steps,
            stamp,
            stamp,
        ),
    )
    row = conn.execute("SELECT * FROM agents WHERE id=?", (agent_id,)).fetchone()
    assert row is not None
    return _agent_dict(row)


def get_agent(conn: sqlite3.Connection, agent_id: str, user_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT * FROM agents WHERE id=? AND user_id=? LIMIT 1", (agent_id, user_id)
    ).fetchone()
    return _agent_dict(row) if row is not None else None


def set_agent_status(
    conn: sqlite3.Connection, agent_id: str, user_id: str, status: str
) -> bool:
    if status not in AGENT_STATUSES:
        raise ValueError(f"unknown agent status: {status}")
    cursor = conn.execute(
        "UPDATE agents SET status=?, updated_at=? WHERE id=? AND user_id=?",
        (status, now_iso(), agent_id, user_id),
    )
    return cursor.rowcount > 0


AGENT_PATCHABLE_COLUMNS = ("name", "persona", "instructions", "avatar_emoji", "max_steps")


def update_agent(
    conn: sqlite3.Connection, agent_id: str, user_id: str, fields: dict[str, Any]
) -> bool:
    updates: list[str] = []
    params: list[object] = []
    for column in AGENT_PATCHABLE_COLUMNS:
        if column in fields:
            updates.append(f"{column}=?")
            params.append(fields[column])
    if not updates:
        return False
    updates.append("updated_at=?")
    params.extend([now_iso(), agent_id, user_id])
    cursor = conn.execute(
        f"UPDATE agents SET {', '.join(updates)} WHERE id=? AND user_id=?",
        tuple(params),
    )
    return cursor.rowcount > 0


def delete_agent(conn: sqlite3.Connection, agent_id: str, user_id: str) -> bool:
    """Remove an agent with its trigger descriptors, behaviours and memory."""
    conn.execute("BEGIN")
    try:
        conn.execute("DELETE FROM poll_triggers WHERE agent_id=?", (agent_id,))
        conn.execute("DELETE FROM agent_schedules WHERE agent_id=?", (agent_id,))
        conn.execute(
            "DELETE FROM agent_behaviours WHERE agent_id=? AND user_id=?", (agent_id, user_id)
        )
        conn.execute(
            "DELETE FROM agent_memory WHERE agent_id=? AND user_id=?", (agent_id, user_id)
        )
        cursor = conn.execute(
            "DELETE FROM agents WHERE id=? AND user_id=?", (agent_id, user_id)
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return cursor.rowcount > 0


def list_agents(conn: sqlite3.Connection, user_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        (
            "SELECT a.*, "
            "(SELECT COUNT(*) FROM agent_behaviours b WHERE b.agent_id=a.id) "
            "AS behaviour_count, "
            "(SELECT COUNT(*) FROM agent_memory m WHERE m.agent_id=a.id) AS memory_count "
            "FROM agents a WHERE a.user_id=? AND a.status != 'archived' "
            "ORDER BY a.created_at DESC"
        ),
        (user_id,),
    ).fetchall()
    items: list[dict[str, Any]] = []
    for row in rows:
        item = _agent_dict(row)
        item["behaviour_count"] = int(row["behaviour_count"])
        item["memory_count"] = int(row["memory_count"])
        items.append(item)
    return items


# Behaviours


def _behaviour_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "agent_id": str(row["agent_id"]),
        "user_id": str(row["user_id"]),
        "behaviour_type": str(row["behaviour_type"]),
        "trigger_type": row["trigger_type"],
        "schedule_cron": row["schedule_cron"],
        "description": str(row["description"]),
        "config": _decode_config(row["config_json"]),
        "enabled": int(row["enabled"]) == 1,
        "last_run_at": row["last_run_at"],
        "created_at": str(row["created_at"]),
    }


def insert_behaviour(
    conn: sqlite3.Connection,
    *,
    agent_id: str,
    user_id: str,
    behaviour_type: str,
    trigger_type: str | None,
    schedule_cron: str | None,
    description: str,
    config: dict[str, Any],
) -> dict[str, Any]:
    behaviour_id = new_id("bhv")
    conn.execute(
        (
            "INSERT INTO agent_behaviours("
            "id, agent_id, user_id, behaviour_type, trigger_type, schedule_cron, "
            "description, config_json, enabled, created_at"
            ") VALUES(?,?,?,?,?,?,?,?,?,?)"
        ),
        (
            behaviour_id,
            agent_id,
            user_id,
            behaviour_type,
            trigger_type,
            schedule_cron,
            description,
            json.dumps(config, sort_keys=True),
            1,
            now_iso(),
        ),
    )
    row = conn.execute("SELECT * FROM agent_behaviours WHERE id=?", (behaviour_id,)).fetchone()
    assert row is not None
    return _behaviour_dict(row)


def list_behaviours(conn: sqlite3.Connection, agent_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM agent_behaviours WHERE agent_id=? ORDER BY created_at, id",
        (agent_id,),
    ).fetchall()
    return [_behaviour_dict(row) for row in rows]


def set_behaviours_enabled(conn: sqlite3.Connection, agent_id: str, enabled: bool) -> int:
    cursor = conn.execute(
        "UPDATE agent_behaviours SET enabled=? WHERE agent_id=?",
        (1 if enabled else 0, agent_id),
    )
    return cursor.rowcount


# Memory


def insert_memory(
    conn: sqlite3.Connection,
    *,
    agent_id: str,
    user_id: str,
    content: str,
    kind: str,
    weight: int,
    source: str,
) -> str:
    memory_id = new_id("mem")
    stamp = now_iso()
    conn.execute(
        (
            "INSERT INTO agent_memory("
            "id, agent_id, user_id, content, kind, weight, source, created_at, last_accessed_at"
            ") VALUES(?,?,?,?,?,?,?,?,?)"
        ),
        (memory_id, agent_id, user_id, content, kind, weight, source, stamp, stamp),
    )
    return memory_id


def _memory_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "content": str(row["content"]),
        "kind": str(row["kind"]),
        "weight": int(row["weight"]),
        "source": str(row["source"]),
        "created_at": str(row["created_at"]),
        "last_accessed_at": str(row["last_accessed_at"]),
    }


def list_memories(
    conn: sqlite3.Connection, agent_id: str, user_id: str, limit: int = 50
) -> list[dict[str, Any]]:
    rows = conn.execute(
        (
            "SELECT id, content, kind, weight, source, created_at, last_accessed_at "
            "FROM agent_memory WHERE agent_id=? AND user_id=? "
            "ORDER BY weight DESC, last_accessed_at DESC LIMIT ?"
        ),
        (agent_id, user_id, limit),
    ).fetchall()
    return [_memory_dict(row) for row in rows]


def get_memory(
    conn: sqlite3.Connection, memory_id: str, agent_id: str, user_id: str
) -> dict[str, Any] | None:
    row = conn.execute(
        (
            "SELECT id, content, kind, weight, source, created_at, last_accessed_at "
            "FROM agent_memory WHERE id=? AND agent_id=? AND user_id=? LIMIT 1"
        ),
        (memory_id, agent_id, user_id),
    ).fetchone()
    return _memory_dict(row) if row is not None else None


def delete_memory(
    conn: sqlite3.Connection, memory_id: str, agent_id: str, user_id: str
) -> bool:
    cursor = conn.execute(
        "DELETE FROM agent_memory WHERE id=? AND agent_id=? AND user_id=?",
        (memory_id, agent_id, user_id),
    )
    return cursor.rowcount > 0


# Trigger descriptors


def upsert_poll_trigger(
    conn: sqlite3.Connection,
    *,
    agent_id: str,
    behaviour_id: str,
    trigger_type: str,
    config: dict[str, Any],
    poll_interval: int,
) -> tuple[str, bool]:
    """Create or re-enable the poll descriptor for a behaviour.

    Returns ``(trigger_id, created)``; one descriptor exists per behaviour no
    matter how often the behaviour is activated.
    """
    stamp = now_iso()
    row = conn.execute(
        "SELECT id FROM poll_triggers WHERE behaviour_id=? LIMIT 1", (behaviour_id,)
    ).fetchone()
    if row is not None:
        conn.execute(
            (
                "UPDATE poll_triggers SET trigger_type=?, config_json=?, poll_interval=?, "
                "enabled=1, next_poll_at=?, updated_at=? WHERE id=?"
            ),
            (
                trigger_type,
                json.dumps(config, sort_keys=True),
                poll_interval,
                stamp,
                stamp,
                str(row["id"]),
            ),
        )
        return str(row["id"]), False
    trigger_id = new_id("ptr")
    conn.execute(
        (
            "INSERT INTO poll_triggers("
            "id, agent_id, behaviour_id, trigger_type, config_json, next_poll_at, "
            "poll_interval, enabled, created_at, updated_at"
            ") VALUES(?,?,?,?,?,?,?,?,?,?)"
        ),
        (
            trigger_id,
            agent_id,
            behaviour_id,
            trigger_type,
            json.dumps(config, sort_keys=True),
            stamp,
            poll_interval,
            1,
            stamp,
            stamp,
        ),
    )
    return trigger_id, True


def set_poll_trigger_enabled(conn: sqlite3.Connection, behaviour_id: str, enabled: bool) -> bool:
    cursor = conn.execute(
        "UPDATE poll_triggers SET enabled=?, updated_at=? WHERE behaviour_id=?",
        (1 if enabled else 0, now_iso(), behaviour_id),
    )
    return cursor.rowcount > 0


def list_poll_triggers(conn: sqlite3.Connection, agent_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        (
            "SELECT id, behaviour_id, trigger_type, config_json, next_poll_at, poll_interval, "
            "enabled FROM poll_triggers WHERE agent_id=? ORDER BY created_at, id"
        ),
        (agent_id,),
    ).fetchall()
    return [
        {
            "id": str(row["id"]),
            "behaviour_id": str(row["behaviour_id"]),
            "trigger_type": str(row["trigger_type"]),
            "config": _decode_config(row["config_json"]),
            "next_poll_at": str(row["next_poll_at"]),
            "poll_interval": int(row["poll_interval"]),
            "enabled": int(row["enabled"]) == 1,
        }
        for row in rows
    ]


def upsert_schedule(
    conn: sqlite3.Connection,
    *,
    agent_id: str,
    behaviour_id: str,
    cron_expr: str,
    timezone: str,
    next_run_at: str | None,
) -> tuple[str, bool]:
    stamp = now_iso()
    row = conn.execute(
        "SELECT id FROM agent_schedules WHERE behaviour_id=? LIMIT 1", (behaviour_id,)
    ).fetchone()
    if row is not None:
        conn.execute(
            (
                "UPDATE agent_schedules SET cron_expr=?, timezone=?, next_run_at=?, enabled=1, "
                "updated_at=? WHERE id=?"
            ),
            (cron_expr, timezone, next_run_at, stamp, str(row["id"])),
        )
        return str(row["id"]), False
    schedule_id = new_id("sch")
    conn.execute(
        (
            "INSERT INTO agent_schedules("
            "id, agent_id, behaviour_id, cron_expr, timezone, next_run_at, enabled, "
            "created_at, updated_at"
            ") VALUES(?,?,?,?,?,?,?,?,?)"
        ),
        (schedule_id, agent_id, behaviour_id, cron_expr, timezone, next_run_at, 1, stamp, stamp),
    )
    return schedule_id, True


def set_schedule_enabled(conn: sqlite3.Connection, behaviour_id: str, enabled: bool) -> bool:
    cursor = conn.execute(
        "UPDATE agent_schedules SET enabled=?, updated_at=? WHERE behaviour_id=?",
        (1 if enabled else 0, now_iso(), behaviour_id),
    )
    return cursor.rowcount > 0


def list_schedules(conn: sqlite3.Connection, agent_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        (
            "SELECT id, behaviour_id, cron_expr, timezone, next_run_at, enabled "
            "FROM agent_schedules WHERE agent_id=? ORDER BY created_at, id"
        ),
        (agent_id,),
    ).fetchall()
    return [
        {
            "id": str(row["id"]),
            "behaviour_id": str(row["behaviour_id"]),
            "cron_expr": str(row["cron_expr"]),
            "timezone": str(row["timezone"]),
            "next_run_at": row["next_run_at"],
            "enabled": int(row["enabled"]) == 1,
        }
        for row in rows
    ]
