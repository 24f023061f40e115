"""One scrape pass over a node's storage.

A pass is a fixed, ordered sequence of storage reads. Later reads depend on
earlier ones (reward points are keyed by the active era), so nothing is
reordered or parallelised. The pass either returns every sample or raises;
callers never see a partial snapshot.
"""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable, ContextManager, Dict, List, Mapping, Optional, Sequence, Tuple

from scalecodec.base import RuntimeConfigurationObject
from scalecodec.type_registry import load_type_registry_preset

from . import queries as q
from .address import AddressEncoder
from .queries import StorageQuery
from .types import ABSENT, DecodeError, MetricSample, PendingHeader, RewardPoints

log = logging.getLogger("chain-state-exporter.scrape")

SessionFactory = Callable[[], ContextManager[Any]]


@functools.lru_cache(maxsize=None)
def _scale_types() -> RuntimeConfigurationObject:
    runtime_config = RuntimeConfigurationObject()
    runtime_config.update_type_registry(load_type_registry_preset("core"))
    return runtime_config


def encode_era_index(index: int) -> bytes:
    """SCALE encoding of an EraIndex (u32, little endian)."""
    return bytes(_scale_types().create_scale_object("u32").encode(index).data)


def _as_int(value: Any, query: str) -> int:
    if isinstance(value, bool):
        raise DecodeError(query, f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            pass
    raise DecodeError(query, f"expected an integer, got {value!r}")


def _as_list(value: Any, query: str) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise DecodeError(query, f"expected a list, got {value!r}")


def _field(value: Any, name: str, query: str) -> Any:
    if not isinstance(value, Mapping) or name not in value:
        raise DecodeError(query, f"expected a record with {name!r}, got {value!r}")
    return value[name]


def parse_active_era(value: Any) -> int:
    return _as_int(_field(value, "index", q.ACTIVE_ERA.path), q.ACTIVE_ERA.path)


def parse_validators(value: Any) -> List[str]:
    validators = _as_list(value, q.VALIDATORS.path)
    for v in validators:
        if not isinstance(v, str):
            raise DecodeError(q.VALIDATORS.path, f"expected an account id, got {v!r}")
    return validators


def parse_reward_points(value: Any) -> RewardPoints:
    """Parse an EraRewardPoints record.

    ``individual`` may come out of the decoder as a list of ``(account, points)``
    pairs, as ``{"col1": account, "col2": points}`` records, or as a mapping of
    account to points.
    """
    path = q.ERA_REWARD_POINTS.path
    total = _as_int(_field(value, "total", path), path)
    individual = _field(value, "individual", path)

    if isinstance(individual, Mapping):
        entries = list(individual.items())
    else:
        entries = _as_list(individual, path)

    individuals: List[Tuple[str, int]] = []
    for entry in entries:
        if isinstance(entry, Mapping):
            account, points = _field(entry, "col1", path), _field(entry, "col2", path)
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            account, points = entry
        else:
            raise DecodeError(path, f"unexpected reward points entry {entry!r}")
        if not isinstance(account, str):
            raise DecodeError(path, f"expected an account id, got {account!r}")
        individuals.append((account, _as_int(points, path)))

    return RewardPoints(total=total, individuals=individuals)


def correlate_reward_points(validators: Sequence[str],
                            individuals: Sequence[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Pair every validator with its points, zero when it has none.

    Validator order is kept; matching is by account id, not by position.
    """
    result = []
    for validator in validators:
        points = 0
        for account, account_points in individuals:
            if account == validator:
                points = account_points
                break
        result.append((validator, points))
    return result


def parse_pending_headers(value: Any) -> List[PendingHeader]:
    """Parse the pending relay header parcels queue.

    Each entry is ``(block_number, parcel, voting_state)`` where the parcel
    carries the ethereum header being relayed.
    """
    path = q.PENDING_HEADERS.path
    headers = []
    for entry in _as_list(value, path):
        if not isinstance(entry, (list, tuple)) or len(entry) < 2:
            raise DecodeError(path, f"unexpected pending header entry {entry!r}")
        header = _field(entry[1], "header", path)
        headers.append(PendingHeader(
            block_number=_as_int(entry[0], path),
            ethereum_block_number=_as_int(_field(header, "number", path), path),
        ))
    return headers


def parse_authority_votes(value: Any) -> int:
    """Number of signatures collected for the open authorities round.

    The round is stored as ``(message, [(authority, signature), ...])``.
    """
    path = q.AUTHORITIES_TO_SIGN.path
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return len(_as_list(value[1], path))
    raise DecodeError(path, f"expected (message, signatures), got {value!r}")


def parse_next_authorities_deadline(value: Any) -> int:
    path = q.NEXT_AUTHORITIES.path
    return _as_int(_field(value, "deadline", path), path)


class ScrapeOrchestrator:
    """Runs scrape passes against sessions produced by ``session_factory``."""

    def __init__(self, session_factory: SessionFactory, address_encoder: AddressEncoder,
                 queries: Optional[Dict[str, StorageQuery]] = None):
        self.session_factory = session_factory
        self.address_encoder = address_encoder
        self.queries = queries if queries is not None else q.QUERIES

    def run(self) -> List[MetricSample]:
        """Open a session, scrape it and close it on every exit path."""
        with self.session_factory() as session:
            return self.scrape(session)

    def _read(self, session, name: str, *params: Any) -> Any:
        query = self.queries[name]
        return query.resolve(session.query(query.pallet, query.storage, *params))

    def _account_labels(self, account: str) -> Tuple[str, str]:
        try:
            return self.address_encoder.account_id(account), self.address_encoder.encode(account)
        except ValueError as e:
            raise DecodeError(q.VALIDATORS.path, f"invalid account id {account!r}: {e}") from e

    def scrape(self, session) -> List[MetricSample]:
        samples: List[MetricSample] = []

        def emit(key: str, value: float, *labels: str) -> None:
            samples.append(MetricSample(key, float(value), tuple(labels)))

        active_era = parse_active_era(self._read(session, "active_era"))
        emit("active_era_index", active_era)

        session_index = _as_int(self._read(session, "session_index"), q.CURRENT_SESSION.path)
        emit("session_index", session_index)

        validators = parse_validators(self._read(session, "validators"))
        emit("validators_total", len(validators))

        points = parse_reward_points(
            self._read(session, "era_reward_points", encode_era_index(active_era)))
        log.debug(f"Era {active_era}: {len(points.individuals)} reward entries, total {points.total}")
        for account, account_points in correlate_reward_points(validators, points.individuals):
            emit("era_reward_points", account_points, *self._account_labels(account))

        best_confirmed = _as_int(self._read(session, "best_confirmed_block"), q.BEST_CONFIRMED_BLOCK.path)
        emit("best_confirmed_ethereum_block_number", best_confirmed)

        pending = parse_pending_headers(self._read(session, "pending_headers"))
        emit("pending_headers_total", len(pending))
        for header in pending:
            emit("pending_header_ethereum_block_number", header.ethereum_block_number,
                 str(header.block_number))

        mmr_roots = _as_list(self._read(session, "mmr_roots_to_sign"), q.MMR_ROOTS_TO_SIGN.path)
        emit("mmr_roots_to_sign_total", len(mmr_roots))

        to_sign = self._read(session, "authorities_to_sign")
        if to_sign is ABSENT:
            emit("authorities_to_sign", 0)
            emit("authorities_to_sign_votes", 0)
        else:
            emit("authorities_to_sign", 1)
            emit("authorities_to_sign_votes", parse_authority_votes(to_sign))

        next_authorities = self._read(session, "next_authorities")
        if next_authorities is ABSENT:
            emit("next_authorities_deadline", 0)
        else:
            emit("next_authorities_deadline", parse_next_authorities_deadline(next_authorities))

        return samples
