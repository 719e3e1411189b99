"""
Change Bus Abstract Base Class

Carries "session data changed elsewhere" signals between terminals.
The contract is recompute-on-signal: events carry no payload beyond
what changed, and receivers always re-read the full ledger.

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Optional, Union


@dataclass(frozen=True)
class ChangeEvent:
    """
    A change signal.

    Attributes:
        entity: What changed ("session_payments", "orders", "table_sessions")
        session_id: Affected session, if any
        origin: Identifier of the publishing process
    """
    entity: str
    session_id: Optional[int] = None
    origin: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "ChangeEvent":
        data: dict[str, Any] = json.loads(raw)
        return cls(
            entity=data["entity"],
            session_id=data.get("session_id"),
            origin=data.get("origin"),
        )


ChangeHandler = Callable[[ChangeEvent], Union[None, Awaitable[None]]]


class BaseChangeBus(ABC):
    """Abstract base class for change buses."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name."""
        pass

    @abstractmethod
    def subscribe(self, handler: ChangeHandler) -> Callable[[], None]:
        """
        Register a handler (sync or async).

        Returns:
            Callable that removes the subscription
        """
        pass

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Broadcast an event to every subscriber."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
