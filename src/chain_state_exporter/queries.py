"""Storage queries issued by a scrape pass and what absence means for each.

Some storage items are legitimately empty (no relay header pending, no
authority round open); for those the node's "no value" maps to a default.
Others must always be set on a running chain, and their absence fails the
scrape like any malformed value would.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict

from .types import ABSENT, MissingStorageError


class OnAbsent(enum.Enum):
    DEFAULT = "default"
    ERROR = "error"


@dataclass(frozen=True)
class StorageQuery:
    name: str
    pallet: str
    storage: str
    on_absent: OnAbsent = OnAbsent.ERROR
    default: Any = None

    @property
    def path(self) -> str:
        return f"{self.pallet}.{self.storage}"

    def resolve(self, value: Any) -> Any:
        """Apply the absence policy to a value returned by the session.

        Returns the value unchanged when present, the default when absent and
        allowed, and raises MissingStorageError otherwise.
        """
        if value is not ABSENT:
            return value
        if self.on_absent is OnAbsent.DEFAULT:
            return self.default
        raise MissingStorageError(self.path, "storage has no value")


ACTIVE_ERA = StorageQuery("active_era", "Staking", "ActiveEra")
CURRENT_SESSION = StorageQuery("session_index", "Session", "CurrentIndex")
VALIDATORS = StorageQuery("validators", "Session", "Validators")
ERA_REWARD_POINTS = StorageQuery(
    "era_reward_points", "Staking", "ErasRewardPoints",
    on_absent=OnAbsent.DEFAULT, default={"total": 0, "individual": []},
)
BEST_CONFIRMED_BLOCK = StorageQuery(
    "best_confirmed_block", "EthereumRelay", "BestConfirmedBlockNumber",
    on_absent=OnAbsent.DEFAULT, default=0,
)
PENDING_HEADERS = StorageQuery(
    "pending_headers", "EthereumRelay", "PendingRelayHeaderParcels",
    on_absent=OnAbsent.DEFAULT, default=(),
)
MMR_ROOTS_TO_SIGN = StorageQuery(
    "mmr_roots_to_sign", "EthereumRelayAuthorities", "MmrRootsToSignKeys",
    on_absent=OnAbsent.DEFAULT, default=(),
)
AUTHORITIES_TO_SIGN = StorageQuery(
    "authorities_to_sign", "EthereumRelayAuthorities", "AuthoritiesToSign",
    on_absent=OnAbsent.DEFAULT, default=ABSENT,
)
NEXT_AUTHORITIES = StorageQuery(
    "next_authorities", "EthereumRelayAuthorities", "NextAuthorities",
    on_absent=OnAbsent.DEFAULT, default=ABSENT,
)

# Order is the order of a scrape pass.
QUERIES: Dict[str, StorageQuery] = {
    q.name: q
    for q in (
        ACTIVE_ERA,
        CURRENT_SESSION,
        VALIDATORS,
        ERA_REWARD_POINTS,
        BEST_CONFIRMED_BLOCK,
        PENDING_HEADERS,
        MMR_ROOTS_TO_SIGN,
        AUTHORITIES_TO_SIGN,
        NEXT_AUTHORITIES,
    )
}
