from __future__ import annotations

import random
from collections.abc import Iterable
from typing import Protocol

from fadebot.domain import Member, PresenceStatus

PRESENT_STATUSES = frozenset({PresenceStatus.ONLINE, PresenceStatus.IDLE, PresenceStatus.DND})


def eligible_candidates(members: Iterable[Member], required_tag: str) -> list[Member]:
    """Members holding ``required_tag`` that are not fully absent."""
    return [m for m in members if required_tag in m.tags and m.status in PRESENT_STATUSES]


class CandidateStrategy(Protocol):
    def pick(self, members: Iterable[Member], required_tag: str) -> Member | None:  # pragma: no cover - protocol
        ...


class RandomCandidateStrategy:
    """Pick one eligible member uniformly at random using a seeded RNG."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def pick(self, members: Iterable[Member], required_tag: str) -> Member | None:
        pool = eligible_candidates(members, required_tag)
        if not pool:
            return None
        return self._rng.choice(pool)
