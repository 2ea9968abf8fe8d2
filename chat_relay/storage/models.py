"""
Data models for storage layer.

Defines the user and session records persisted in the relay database.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict


class MessageRole(str, Enum):
    """Roles a session message can carry."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class DailyUsage:
    """Per-day request counter of a user."""
    date: date
    count: int = 0


@dataclass(frozen=True)
class UserRecord:
    """Entitlements and usage of a single user.

    Records are immutable snapshots; every change goes through the
    repository which writes a new snapshot inside one transaction.
    """
    user_id: str
    level: str
    bonus_requests: int
    usage: DailyUsage

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.user_id,
            "level": self.level,
            "bonusRequests": self.bonus_requests,
            "usage": {
                "date": self.usage.date.isoformat(),
                "count": self.usage.count,
            },
        }


@dataclass(frozen=True)
class SessionMessage:
    """One entry of a user's conversation log."""
    role: MessageRole
    content: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
