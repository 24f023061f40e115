"""Shared type and exception definitions for the exporter."""
import enum
from dataclasses import dataclass, field
from typing import List, Tuple


class ExporterError(Exception):
    """Base exception for exporter errors."""
    pass


class ExporterSetupError(ExporterError):
    """Raised when the exporter cannot start (bad types file, unreachable node)."""
    pass


class ScrapeError(ExporterError):
    """Raised when a scrape pass fails; names the logical query that failed."""
    def __init__(self, query: str, message: str):
        self.query = query
        self.message = message
        super().__init__(f"{query}: {message}")


class TransportError(ScrapeError):
    """Connection or RPC round-trip failure."""
    pass


class DecodeError(ScrapeError):
    """Storage is present but does not have the expected shape."""
    pass


class MissingStorageError(DecodeError):
    """Storage is absent and its query does not accept absence."""
    pass


class _Absent:
    """Sentinel for storage the node reports as holding no value."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


class MetricKind(enum.Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricDescriptor:
    """Static description of one exported metric."""
    key: str
    kind: MetricKind
    help: str
    labels: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MetricSample:
    """One value produced by a scrape pass."""
    key: str
    value: float
    labels: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PendingHeader:
    block_number: int
    ethereum_block_number: int


@dataclass
class RewardPoints:
    """Reward points of one era."""
    total: int = 0
    individuals: List[Tuple[str, int]] = field(default_factory=list)
