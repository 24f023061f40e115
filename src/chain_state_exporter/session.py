"""Websocket session to a Substrate node.

One NodeSession is one connection: it is opened at the start of a scrape pass
and closed when the pass ends. Storage keys, runtime metadata and SCALE
decoding come from substrate-interface.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from scalecodec.base import ScaleBytes
from substrateinterface import SubstrateInterface
from substrateinterface.exceptions import StorageFunctionNotFound, SubstrateRequestException
from websocket import WebSocketException

from .config import ExporterConfig
from .types import ABSENT, DecodeError, ExporterSetupError, TransportError

log = logging.getLogger("chain-state-exporter.session")

_TRANSPORT_ERRORS = (SubstrateRequestException, WebSocketException, ConnectionError, OSError)


def load_custom_types(path: Optional[str]) -> Optional[Dict[str, Any]]:
    """Load the custom type registry JSON, if one is configured."""
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            types = json.load(f)
    except OSError as e:
        raise ExporterSetupError(f"cannot read types file {path}: {e}") from e
    except ValueError as e:
        raise ExporterSetupError(f"types file {path} is not valid JSON: {e}") from e
    if not isinstance(types, dict):
        raise ExporterSetupError(f"types file {path} must contain a JSON object")
    return types


class NodeSession:
    """Issues storage queries over one open connection."""

    def __init__(self, substrate: SubstrateInterface):
        self.substrate = substrate

    @classmethod
    def connect(cls, endpoint: str, ss58_format: Optional[int] = None,
                type_registry: Optional[Dict[str, Any]] = None,
                timeout: Optional[float] = None) -> "NodeSession":
        ws_options = {"timeout": timeout} if timeout else None
        try:
            substrate = SubstrateInterface(
                url=endpoint,
                ss58_format=ss58_format,
                type_registry=type_registry,
                ws_options=ws_options,
                auto_reconnect=False,
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError("connect", f"cannot connect to {endpoint}: {e}") from e
        log.debug(f"Connected to {endpoint}")
        return cls(substrate)

    def close(self) -> None:
        self.substrate.close()

    def __enter__(self) -> "NodeSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def load_runtime(self) -> None:
        """Fetch runtime metadata for the chain head."""
        try:
            self.substrate.init_runtime()
        except _TRANSPORT_ERRORS as e:
            raise TransportError("state_getMetadata", str(e)) from e

    def query(self, pallet: str, storage: str, *params: Any) -> Any:
        """Read and decode one storage item.

        ``bytes`` params are taken as already SCALE encoded. Returns ABSENT when
        the node holds no value for the key.
        """
        path = f"{pallet}.{storage}"
        encoded = [ScaleBytes(p) if isinstance(p, (bytes, bytearray)) else p for p in params]
        try:
            storage_key = self.substrate.create_storage_key(pallet, storage, encoded)
        except StorageFunctionNotFound as e:
            raise DecodeError(path, f"not in runtime metadata: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise TransportError(path, str(e)) from e

        key_hex = storage_key.to_hex()
        log.debug(f"Encoded storage key {path}: {key_hex}")

        try:
            response = self.substrate.rpc_request("state_getStorage", [key_hex, None])
        except _TRANSPORT_ERRORS as e:
            raise TransportError(path, str(e)) from e

        raw = response.get("result")
        if raw is None:
            log.debug(f"Storage {path} has no value")
            return ABSENT
        if not isinstance(raw, str):
            raise TransportError(path, f"unexpected state_getStorage result: {raw!r}")

        try:
            value = self.substrate.decode_scale(storage_key.value_scale_type, raw)
        except Exception as e:
            raise DecodeError(path, f"cannot decode as {storage_key.value_scale_type}: {e}") from e
        log.debug(f"Decoded storage {path}: {value!r}")

        return ABSENT if value is None else value


@contextmanager
def open_session(config: ExporterConfig,
                 type_registry: Optional[Dict[str, Any]] = None) -> Iterator[NodeSession]:
    session = NodeSession.connect(
        config.endpoint,
        ss58_format=config.ss58_format,
        type_registry=type_registry,
        timeout=config.rpc_timeout,
    )
    try:
        yield session
    finally:
        session.close()


def bootstrap(config: ExporterConfig) -> Optional[Dict[str, Any]]:
    """Check that the node is reachable and its runtime loads.

    Returns the custom type registry to use for later sessions. Any failure
    here is fatal to the process.
    """
    type_registry = load_custom_types(config.types_file)
    try:
        with open_session(config, type_registry) as session:
            session.load_runtime()
    except TransportError as e:
        raise ExporterSetupError(f"bootstrap against {config.endpoint} failed: {e}") from e
    return type_registry
