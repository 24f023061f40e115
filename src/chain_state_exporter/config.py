from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .address import DARWINIA_SS58_FORMAT

ENDPOINT_ENV = "CHAIN_STATE_WS_ENDPOINT"
LISTEN_ENV = "CHAIN_STATE_LISTEN"
TYPES_FILE_ENV = "CHAIN_STATE_TYPES_FILE"

DEFAULT_ENDPOINT = "ws://127.0.0.1:9944"
DEFAULT_LISTEN = ":9602"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_NAMESPACE = "darwinia_state"
DEFAULT_RPC_TIMEOUT = 10.0


@dataclass
class ExporterConfig:
    """Runtime configuration, built from the command line and environment."""
    endpoint: str = DEFAULT_ENDPOINT
    listen: str = DEFAULT_LISTEN
    metrics_path: str = DEFAULT_METRICS_PATH
    types_file: Optional[str] = None
    ss58_format: int = DARWINIA_SS58_FORMAT
    namespace: str = DEFAULT_NAMESPACE
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "ExporterConfig":
        """Defaults, then environment, then explicit (non-None) overrides."""
        config = cls(
            endpoint=os.environ.get(ENDPOINT_ENV, DEFAULT_ENDPOINT),
            listen=os.environ.get(LISTEN_ENV, DEFAULT_LISTEN),
            types_file=os.environ.get(TYPES_FILE_ENV) or None,
        )
        for name, value in overrides.items():
            if value is not None:
                setattr(config, name, value)
        return config

    @property
    def address(self) -> Tuple[str, int]:
        return parse_listen(self.listen)


def parse_listen(listen: str) -> Tuple[str, int]:
    """Split ``[ADDR]:PORT`` into an HTTPServer address tuple."""
    host, sep, port = listen.rpartition(":")
    if not sep:
        raise ValueError(f"listen address must be [ADDR]:PORT, got {listen!r}")
    try:
        port_num = int(port)
    except ValueError:
        raise ValueError(f"invalid port in listen address {listen!r}") from None
    if not 0 <= port_num <= 65535:
        raise ValueError(f"port out of range in listen address {listen!r}")
    return host.strip("[]"), port_num
