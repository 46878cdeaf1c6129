from __future__ import annotations

from abc import ABC, abstractmethod

from fadebot.domain import DeliveryResult, Member, Scope


class ChannelAdapter(ABC):
    """Adapter interface for the messaging platform.

    Provides the member snapshots selection works from and one-to-one delivery.
    This release ships only with a mock adapter.
    """

    @abstractmethod
    def list_scopes(self) -> list[Scope]:  # pragma: no cover - interface
        ...

    @abstractmethod
    def list_members(self, scope_id: str) -> list[Member]:  # pragma: no cover - interface
        ...

    @abstractmethod
    def get_member(self, scope_id: str, user_id: str) -> Member | None:  # pragma: no cover - interface
        """Fresh read of one member, used to re-verify a pick before contact."""

    @abstractmethod
    def send(self, user_id: str, text: str) -> DeliveryResult:  # pragma: no cover - interface
        ...

    def close(self) -> None:
        return None
