"""
Rule-based memory extraction from chat messages (no model calls).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

import hypermem.config as config
from hypermem.services.text_chunks import extract_keywords

MIN_MESSAGE_LENGTH = 3
MEANINGFUL_LENGTH = 20
SUMMARY_MAX_LENGTH = 80

_GENERIC_STATE_RE = re.compile(
    r"\b(?:going|doing|feeling|thinking|sure|ok|okay|here|back|ready)\b",
    re.IGNORECASE,
)


@dataclass
class Mention:
    id: str
    name: str


@dataclass
class ChatMessage:
    message_id: str
    channel_id: str
    author_id: str
    author_name: str
    content: str
    mentioned_users: list[Mention] = field(default_factory=list)
    mentioned_channels: list[Mention] = field(default_factory=list)
    mentioned_roles: list[Mention] = field(default_factory=list)


def _likes(match: re.Match) -> Optional[dict]:
    return {"summary": f"User likes {match.group(1).strip()}", "importance": 0.7}


def _dislikes(match: re.Match) -> Optional[dict]:
    return {"summary": f"User dislikes {match.group(1).strip()}", "importance": 0.7}


def _identity(match: re.Match) -> Optional[dict]:
    value = match.group(1).strip()
    if len(value) < 3 or _GENERIC_STATE_RE.search(value):
        return None
    return {"summary": f"User is {value}", "importance": 0.5}


def _favorite(match: re.Match) -> Optional[dict]:
    return {
        "summary": f"User's favorite {match.group(1)} is {match.group(2).strip()}",
        "importance": 0.8,
    }


def _noted(match: re.Match) -> Optional[dict]:
    return {"summary": f"User noted: {match.group(1).strip()}", "importance": 0.9}


# Checked in order; the first pattern producing a fact wins.
FACT_PATTERNS: list[tuple[re.Pattern, Callable[[re.Match], Optional[dict]]]] = [
    (
        re.compile(r"\b(?:i am|im|i)\s+(?:really\s+)?(?:like|love|enjoy|enjoying|prefer)\s+(.+)", re.IGNORECASE),
        _likes,
    ),
    (
        re.compile(r"\b(?:i am|im|i)\s+(?:really\s+)?(?:hate|dislike|cant stand)\s+(.+)", re.IGNORECASE),
        _dislikes,
    ),
    (re.compile(r"\b(?:i am|im|i)\s+(?:a\s+)?(.{3,40})\b", re.IGNORECASE), _identity),
    (re.compile(r"\bmy\s+favorite\s+(\w+)\s+(?:is|:\s+)(.+)", re.IGNORECASE), _favorite),
    (re.compile(r"\b(?:remember|dont forget|note)\s+(?:that\s+)?(.+)", re.IGNORECASE), _noted),
]


def _entity(key: str, node_type: str, name: str, role: str, weight: float) -> dict:
    return {
        "entity": {"key": key, "type": node_type, "name": name},
        "role": role,
        "weight": weight,
    }


def _collect_memberships(message: ChatMessage, content: str) -> list[dict]:
    memberships = [_entity(message.author_id, "user", message.author_name, "participant", 1.0)]
    for user in message.mentioned_users:
        if user.id != message.author_id:
            memberships.append(_entity(user.id, "user", user.name, "participant", 0.9))
    for channel in message.mentioned_channels:
        memberships.append(_entity(channel.id, "channel", channel.name, "location", 0.5))
    for role in message.mentioned_roles:
        memberships.append(_entity(role.id, "topic", role.name, "topic", 0.6))
    for keyword in extract_keywords(content):
        memberships.append(_entity(keyword, "topic", keyword, "topic", 0.3))
    return memberships[: config.MAX_MEMBERSHIPS]


def _summarize(author_name: str, memberships: list[dict]) -> str:
    entities = [item["entity"] for item in memberships]
    topics = [entity["name"] for entity in entities if entity["type"] == "topic"][:3]
    others = [
        entity["name"]
        for entity in entities
        if entity["type"] == "user" and entity["name"] != author_name
    ][:2]

    summary = f"{author_name} with {' and '.join(others)}" if others else author_name
    if topics:
        summary += f" about {', '.join(topics)}"
    if len(summary) > SUMMARY_MAX_LENGTH:
        summary = summary[: SUMMARY_MAX_LENGTH - 3] + "..."
    return summary


def _importance(content: str, memberships: list[dict]) -> float:
    score = 0.3
    if len(content) > 50:
        score += 0.1
    if len(content) > 100:
        score += 0.1
    user_count = sum(1 for item in memberships if item["entity"]["type"] == "user")
    topic_count = sum(1 for item in memberships if item["entity"]["type"] == "topic")
    score += min(user_count * 0.15, 0.3)
    score += min(topic_count * 0.05, 0.2)
    if "?" in content:
        score += 0.1
    if "!" in content:
        score += 0.05
    return round(min(score, 1.0), 4)


def extract_message_memory(message: ChatMessage) -> Optional[dict]:
    """
    Turn a chat message into hyperedge data, or None if it is not worth keeping.

    Fact phrasings ("I like ...", "my favorite X is ...") become "fact" edges;
    other substantial messages become "observation" edges.
    """
    content = (message.content or "").strip()
    if len(content) < MIN_MESSAGE_LENGTH:
        return None

    memberships = _collect_memberships(message, content)
    edge_data = {
        "channel_id": message.channel_id,
        "content": content,
        "source_message_id": message.message_id,
        "memberships": memberships,
    }

    for pattern, build in FACT_PATTERNS:
        match = pattern.search(content)
        if not match:
            continue
        fact = build(match)
        if fact:
            edge_data.update(
                edge_type="fact",
                summary=fact["summary"][: config.MAX_SUMMARY_LENGTH],
                importance=fact["importance"],
            )
            return edge_data

    has_other_users = any(
        item["entity"]["type"] == "user" and item["entity"]["key"] != message.author_id
        for item in memberships
    )
    has_topics = any(item["entity"]["type"] == "topic" for item in memberships)
    if has_other_users or has_topics or len(content) > MEANINGFUL_LENGTH:
        edge_data.update(
            edge_type="observation",
            summary=_summarize(message.author_name, memberships),
            importance=_importance(content, memberships),
        )
        return edge_data
    return None
