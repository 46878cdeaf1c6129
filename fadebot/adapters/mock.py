from __future__ import annotations

import json
import random
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fadebot.adapters.base import ChannelAdapter
from fadebot.config import Settings
from fadebot.domain import DeliveryResult, Member, PresenceStatus, Scope
from fadebot.logging_setup import get_logger


@dataclass
class SentMessage:
    user_id: str
    text: str


class MockAdapter(ChannelAdapter):
    """In-memory mock adapter loading from example_data.

    - Simulates latency per settings.MOCK_LATENCY_MS_RANGE
    - Fails a fraction of deliveries per settings.MOCK_DELIVERY_FAILURE_RATE
    - Deterministic outcomes by seeding random with settings.SEED
    """

    def __init__(
        self,
        settings: Settings,
        data_dir: Path | None = None,
        scopes: dict[str, Any] | None = None,
    ) -> None:
        self.settings = settings
        self._rng = random.Random(settings.SEED)
        self._lock = threading.Lock()
        self._logger = get_logger(self.__class__.__name__)

        self._data_dir = data_dir or settings.DATA_DIR or (Path(__file__).resolve().parents[2] / "example_data")
        self._scopes: dict[str, Scope] = {}
        self._members: dict[str, dict[str, Member]] = {}
        self._unreachable: set[str] = set()

        self.outbox: list[SentMessage] = []

        if scopes is not None:
            self._load_scopes(scopes)
        else:
            self._load_data()

    # Public API -----------------------------------------------------------------
    def list_scopes(self) -> list[Scope]:
        return list(self._scopes.values())

    def list_members(self, scope_id: str) -> list[Member]:
        self._simulate_latency()
        return list(self._members.get(scope_id, {}).values())

    def get_member(self, scope_id: str, user_id: str) -> Member | None:
        return self._members.get(scope_id, {}).get(user_id)

    def send(self, user_id: str, text: str) -> DeliveryResult:
        self._simulate_latency()
        if user_id in self._unreachable:
            return DeliveryResult(ok=False, user_id=user_id, message="direct messages disabled")
        with self._lock:
            failed = self._rng.random() < self.settings.MOCK_DELIVERY_FAILURE_RATE
            if not failed:
                self.outbox.append(SentMessage(user_id=user_id, text=text))
        if failed:
            return DeliveryResult(ok=False, user_id=user_id, message="simulated delivery failure")
        return DeliveryResult(ok=True, user_id=user_id)

    # Test helpers ----------------------------------------------------------------
    def set_member(self, scope_id: str, member: Member) -> None:
        """Replace a member snapshot, e.g. to simulate a tag or presence change."""
        self._members.setdefault(scope_id, {})[member.id] = member

    def remove_member(self, scope_id: str, user_id: str) -> None:
        self._members.get(scope_id, {}).pop(user_id, None)

    def block(self, user_id: str) -> None:
        self._unreachable.add(user_id)

    def sent_to(self, user_id: str) -> list[str]:
        return [m.text for m in self.outbox if m.user_id == user_id]

    # Internals -----------------------------------------------------------------
    def _load_data(self) -> None:
        members_path = self._data_dir / "members.json"
        if not members_path.exists():
            self._logger.warning("example_data not found at %s", self._data_dir)
            return
        self._load_scopes(json.loads(members_path.read_text(encoding="utf-8")))
        self._logger.info(
            "Loaded %d scopes and %d members from %s",
            len(self._scopes),
            sum(len(m) for m in self._members.values()),
            self._data_dir,
        )

    def _load_scopes(self, raw: dict[str, Any]) -> None:
        for s in raw.get("scopes", []):
            scope = Scope(id=str(s["id"]), name=s.get("name", ""))
            self._scopes[scope.id] = scope
            members = self._members.setdefault(scope.id, {})
            for m in s.get("members", []):
                member = Member(
                    id=str(m["id"]),
                    username=m.get("username", ""),
                    tags=frozenset(m.get("tags", [])),
                    status=PresenceStatus(m.get("status", "offline")),
                    activity=m.get("activity", {}),
                )
                members[member.id] = member

    def _simulate_latency(self) -> None:
        low_ms, high_ms = self.settings.MOCK_LATENCY_MS_RANGE
        if high_ms <= 0:
            return
        delay_s = self._rng.uniform(low_ms / 1000.0, high_ms / 1000.0)
        time.sleep(delay_s)
