"""Entity builders shared by the tests."""

import json
from typing import Any, Dict, Optional

from curator_backup.schemas import ENTITY_TYPES


def make_curator(discord_id: str, name: str, **extra: Any) -> Dict[str, Any]:
    curator = {
        "discordId": discord_id,
        "name": name,
        "factions": ["LSPD"],
        "curatorType": "government",
        "subdivision": None,
        "isActive": True,
    }
    curator.update(extra)
    return curator


def make_server(server_id: str, name: str, **extra: Any) -> Dict[str, Any]:
    server = {
        "serverId": server_id,
        "name": name,
        "roleTagId": None,
        "completedTasksChannelId": None,
        "isActive": True,
    }
    server.update(extra)
    return server


def make_setting(key: str, value: str) -> Dict[str, Any]:
    return {"key": key, "value": value}

def make_activity(curator_id: int, server_id: int, message_id: Optional[str] = "m1", **extra: Any) -> Dict[str, Any]:
    activity = {
        "curatorId": curator_id,
        "serverId": server_id,
        "type": "message",
        "channelId": "c1",
        "channelName": "general",
        "messageId": message_id,
        "content": "hello",
        "reactionEmoji": None,
        "targetMessageId": None,
        "targetMessageContent": None,
        "timestamp": "2024-05-01T10:00:00.000Z",
    }
    activity.update(extra)
    return activity


def make_task_report(server_id: int, message_id: str, curator_id: Optional[int] = None, **extra: Any) -> Dict[str, Any]:
    report = {
        "serverId": server_id,
        "authorId": "u1",
        "authorName": "Author",
        "messageId": message_id,
        "channelId": "tasks",
        "content": "3 tasks",
        "taskCount": 3,
        "submittedAt": "2024-05-01T10:00:00.000Z",
        "weekStart": "2024-04-29",
        "status": "pending",
        "curatorId": curator_id,
    }
    report.update(extra)
    return report


def make_response(server_id: int, mention_id: str, curator_id: Optional[int] = None, **extra: Any) -> Dict[str, Any]:
    response = {
        "serverId": server_id,
        "curatorId": curator_id,
        "mentionMessageId": mention_id,
        "mentionTimestamp": "2024-05-01T10:00:00.000Z",
        "responseMessageId": None,
        "responseTimestamp": None,
        "responseType": None,
        "responseTimeSeconds": None,
    }
    response.update(extra)
    return response


def full_counts(**nonzero: int) -> Dict[str, int]:
    """Per-type counts of a snapshot of every registered type."""
    counts = {name: 0 for name in ENTITY_TYPES}
    counts.update(nonzero)
    return counts


def dump_live(entities: Any) -> str:
    """Stable byte-level representation for before/after comparisons."""
    return json.dumps(entities, sort_keys=True, default=str)
