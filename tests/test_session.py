from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from scalecodec.base import ScaleBytes
from substrateinterface.exceptions import StorageFunctionNotFound, SubstrateRequestException
from websocket import WebSocketConnectionClosedException

from chain_state_exporter.config import ExporterConfig
from chain_state_exporter.session import NodeSession, bootstrap, load_custom_types, open_session
from chain_state_exporter.types import ABSENT, DecodeError, ExporterSetupError, TransportError


def _substrate(result="0x0a000000", decoded=10):
    substrate = MagicMock()
    storage_key = MagicMock()
    storage_key.to_hex.return_value = "0xdeadbeef"
    storage_key.value_scale_type = "u32"
    substrate.create_storage_key.return_value = storage_key
    substrate.rpc_request.return_value = {"jsonrpc": "2.0", "result": result, "id": 1}
    substrate.decode_scale.return_value = decoded
    return substrate


def test_query_decodes_value():
    substrate = _substrate()
    value = NodeSession(substrate).query("Session", "CurrentIndex")

    assert value == 10
    substrate.create_storage_key.assert_called_once_with("Session", "CurrentIndex", [])
    substrate.rpc_request.assert_called_once_with("state_getStorage", ["0xdeadbeef", None])
    substrate.decode_scale.assert_called_once_with("u32", "0x0a000000")


def test_query_wraps_encoded_params():
    substrate = _substrate()
    NodeSession(substrate).query("Staking", "ErasRewardPoints", b"\x0a\x00\x00\x00")

    params = substrate.create_storage_key.call_args[0][2]
    assert isinstance(params[0], ScaleBytes)
    assert params[0].data == bytearray(b"\x0a\x00\x00\x00")


def test_query_null_result_is_absent():
    substrate = _substrate(result=None)
    assert NodeSession(substrate).query("EthereumRelay", "PendingRelayHeaderParcels") is ABSENT
    substrate.decode_scale.assert_not_called()


def test_query_decoded_none_is_absent():
    substrate = _substrate(decoded=None)
    assert NodeSession(substrate).query("EthereumRelayAuthorities", "AuthoritiesToSign") is ABSENT


def test_query_rpc_error_is_transport_error():
    substrate = _substrate()
    substrate.rpc_request.side_effect = SubstrateRequestException({"code": -32000, "message": "boom"})
    with pytest.raises(TransportError) as excinfo:
        NodeSession(substrate).query("Session", "Validators")
    assert excinfo.value.query == "Session.Validators"


def test_query_connection_drop_is_transport_error():
    substrate = _substrate()
    substrate.rpc_request.side_effect = BrokenPipeError("broken pipe")
    with pytest.raises(TransportError):
        NodeSession(substrate).query("Session", "Validators")


def test_query_closed_socket_fails_without_resend():
    substrate = _substrate()
    substrate.rpc_request.side_effect = WebSocketConnectionClosedException("socket is already closed.")
    with pytest.raises(TransportError) as excinfo:
        NodeSession(substrate).query("Session", "CurrentIndex")
    assert excinfo.value.query == "Session.CurrentIndex"
    assert substrate.rpc_request.call_count == 1
    substrate.connect.assert_not_called()


def test_query_decode_failure_is_decode_error():
    substrate = _substrate()
    substrate.decode_scale.side_effect = ValueError("remaining bytes")
    with pytest.raises(DecodeError):
        NodeSession(substrate).query("Staking", "ActiveEra")


def test_query_unknown_storage_is_decode_error():
    substrate = _substrate()
    substrate.create_storage_key.side_effect = StorageFunctionNotFound('Storage function "X.Y" not found')
    with pytest.raises(DecodeError):
        NodeSession(substrate).query("X", "Y")


@patch("chain_state_exporter.session.SubstrateInterface", side_effect=ConnectionRefusedError("refused"))
def test_connect_failure_is_transport_error(mock_cls):
    with pytest.raises(TransportError) as excinfo:
        NodeSession.connect("ws://127.0.0.1:1")
    assert excinfo.value.query == "connect"


@patch("chain_state_exporter.session.SubstrateInterface")
def test_connect_passes_options(mock_cls):
    NodeSession.connect("ws://node:9944", ss58_format=18, type_registry={"types": {}}, timeout=5)
    mock_cls.assert_called_once_with(
        url="ws://node:9944",
        ss58_format=18,
        type_registry={"types": {}},
        ws_options={"timeout": 5},
        auto_reconnect=False,
    )


@patch("chain_state_exporter.session.SubstrateInterface")
def test_open_session_closes_on_error(mock_cls):
    config = ExporterConfig(endpoint="ws://node:9944")
    with pytest.raises(RuntimeError):
        with open_session(config):
            raise RuntimeError("mid-scrape")
    mock_cls.return_value.close.assert_called_once()


def test_load_custom_types(tmp_path):
    path = tmp_path / "types.json"
    path.write_text(json.dumps({"types": {"EraIndex": "u32"}}))
    assert load_custom_types(str(path)) == {"types": {"EraIndex": "u32"}}
    assert load_custom_types(None) is None


def test_load_custom_types_errors(tmp_path):
    with pytest.raises(ExporterSetupError):
        load_custom_types(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ExporterSetupError):
        load_custom_types(str(bad))

    not_object = tmp_path / "list.json"
    not_object.write_text("[]")
    with pytest.raises(ExporterSetupError):
        load_custom_types(str(not_object))


@patch("chain_state_exporter.session.SubstrateInterface")
def test_bootstrap_loads_runtime(mock_cls, tmp_path):
    path = tmp_path / "types.json"
    path.write_text(json.dumps({"types": {}}))
    config = ExporterConfig(endpoint="ws://node:9944", types_file=str(path))

    assert bootstrap(config) == {"types": {}}
    mock_cls.return_value.init_runtime.assert_called_once()
    mock_cls.return_value.close.assert_called_once()


@patch("chain_state_exporter.session.SubstrateInterface", side_effect=ConnectionRefusedError("refused"))
def test_bootstrap_unreachable_node_is_setup_error(mock_cls):
    with pytest.raises(ExporterSetupError):
        bootstrap(ExporterConfig(endpoint="ws://127.0.0.1:1"))
