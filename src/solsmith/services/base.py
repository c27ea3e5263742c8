"""Abstract service lifecycle interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional


class Service(ABC):
    """A long-lived component started before the chat gateway and stopped after it."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @property
    def unavailable_hint(self) -> Optional[str]:
        """What the operator should fix when :meth:`health_check` fails after startup."""
        return None

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release everything the service holds. Must be safe to call twice."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
