from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from chain_state_exporter.types import ABSENT


class FakeSession:
    """In-memory stand-in for NodeSession.

    ``storage`` maps ``(pallet, storage)`` to a decoded value, ABSENT, or an
    exception instance to raise.
    """

    def __init__(self, storage: Dict[Tuple[str, str], Any]):
        self.storage = storage
        self.calls: List[Tuple[str, str, tuple]] = []
        self.closed = False

    def query(self, pallet: str, storage: str, *params: Any) -> Any:
        self.calls.append((pallet, storage, params))
        value = self.storage.get((pallet, storage), ABSENT)
        if isinstance(value, Exception):
            raise value
        return value

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True


class FakeEncoder:
    def account_id(self, identity: str) -> str:
        return identity

    def encode(self, identity: str) -> str:
        return f"addr-{identity}"


def chain_storage(**overrides) -> Dict[Tuple[str, str], Any]:
    storage = {
        ("Staking", "ActiveEra"): {"index": 10, "start": 1600000000000},
        ("Session", "CurrentIndex"): 61,
        ("Session", "Validators"): ["A", "B"],
        ("Staking", "ErasRewardPoints"): {"total": 100, "individual": [("A", 100)]},
        ("EthereumRelay", "BestConfirmedBlockNumber"): 12000000,
        ("EthereumRelay", "PendingRelayHeaderParcels"): ABSENT,
        ("EthereumRelayAuthorities", "MmrRootsToSignKeys"): [900, 901],
        ("EthereumRelayAuthorities", "AuthoritiesToSign"): ABSENT,
        ("EthereumRelayAuthorities", "NextAuthorities"): ABSENT,
    }
    for key, value in overrides.items():
        pallet, item = key.split("__")
        storage[(pallet, item)] = value
    return storage


@pytest.fixture
def encoder():
    return FakeEncoder()
