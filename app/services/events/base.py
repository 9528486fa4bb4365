"""
Change Feed Abstract Base Class

Defines the interface for broadcasting row changes (orders, final bills,
service requests) to connected clients. Subscribers always receive the
events of one workspace and can narrow them to one table.

Design Pattern: Strategy Pattern
    - MemoryChangeFeed fans out in-process (development, tests)
    - RedisChangeFeed fans out across workers via pub/sub (production)
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Optional


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """
    One row change.

    Attributes:
        workspace_id: Tenant the row belongs to
        table: Source table ("orders", "final_bills", "service_requests")
        change_type: INSERT, UPDATE or DELETE
        row_id: Primary key of the changed row
        table_number: Restaurant table the row concerns, if any
        payload: New row state (or old state for deletes)
    """
    workspace_id: str
    table: str
    change_type: ChangeType
    row_id: Any
    table_number: Optional[int] = None
    payload: dict = field(default_factory=dict)
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def matches(self, workspace_id: str, table_number: Optional[int] = None) -> bool:
        if self.workspace_id != workspace_id:
            return False
        if table_number is not None and self.table_number != table_number:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "workspace_id": self.workspace_id,
            "table": self.table,
            "type": self.change_type.value,
            "row_id": self.row_id,
            "table_number": self.table_number,
            "payload": self.payload,
            "occurred_at": self.occurred_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json.loads(raw)
        return cls(
            workspace_id=data["workspace_id"],
            table=data["table"],
            change_type=ChangeType(data["type"]),
            row_id=data.get("row_id"),
            table_number=data.get("table_number"),
            payload=data.get("payload") or {},
            occurred_at=data.get("occurred_at") or datetime.now(timezone.utc).isoformat(),
        )


class BaseChangeFeed(ABC):
    """Abstract base class for change notification transports."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name (e.g. "memory", "redis")."""
        pass

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscriber."""
        pass

    @abstractmethod
    def subscribe(
        self,
        workspace_id: str,
        table_number: Optional[int] = None,
    ) -> AsyncIterator[ChangeEvent]:
        """
        Yield events for a workspace, optionally narrowed to one table,
        until the consumer stops iterating.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
