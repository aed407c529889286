"""
Tests for the JSON-RPC LedgerReader using httpx.MockTransport.
"""

from __future__ import annotations

import base64
import json

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair

from evore_crank.core.exceptions import LedgerUnavailable, SubmitRejected
from evore_crank.ledger.reader import MemcmpFilter, RpcLedgerReader

from conftest import PROGRAM_ID

OWNER = str(PROGRAM_ID)


def _account(data: bytes, lamports: int = 5) -> dict:
    return {"lamports": lamports, "owner": OWNER, "data": [base64.b64encode(data).decode(), "base64"]}


def _reader(handler, **kwargs) -> RpcLedgerReader:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return RpcLedgerReader("http://rpc.test/", client=client, **kwargs)


def _result(request: httpx.Request, result) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def test_get_slot_and_account():
    def handler(request):
        body = json.loads(request.content)
        if body["method"] == "getSlot":
            return _result(request, 1234)
        assert body["params"][1]["encoding"] == "base64"
        return _result(request, {"context": {"slot": 1}, "value": _account(b"\x01\x02", 77)})

    reader = _reader(handler)
    assert reader.get_slot() == 1234
    snap = reader.get_account(PROGRAM_ID)
    assert snap.data == b"\x01\x02"
    assert snap.lamports == 77
    assert snap.owner == PROGRAM_ID


def test_missing_account_is_none():
    reader = _reader(lambda r: _result(r, {"context": {"slot": 1}, "value": None}))
    assert reader.get_account(PROGRAM_ID) is None


def test_get_accounts_chunks_and_keeps_order():
    calls = []

    def handler(request):
        keys = json.loads(request.content)["params"][0]
        calls.append(len(keys))
        return _result(request, {"context": {"slot": 1}, "value": [_account(b"", i) for i in range(len(keys))]})

    addresses = [Keypair().pubkey() for _ in range(250)]
    snaps = _reader(handler, concurrency=3).get_accounts(addresses)
    assert sorted(calls) == [50, 100, 100]
    assert [s.address for s in snaps] == addresses
    assert snaps[100].lamports == 0
    assert snaps[249].lamports == 49


def test_get_accounts_length_mismatch():
    reader = _reader(lambda r: _result(r, {"context": {"slot": 1}, "value": []}))
    with pytest.raises(LedgerUnavailable):
        reader.get_accounts([Keypair().pubkey()])


def test_program_accounts_filters():
    seen = {}
    key = Keypair().pubkey()

    def handler(request):
        seen.update(json.loads(request.content))
        return _result(request, [{"pubkey": str(key), "account": _account(b"\x65")}])

    snaps = _reader(handler).get_program_accounts(PROGRAM_ID, [MemcmpFilter(40, bytes(key))])
    assert seen["params"][1]["filters"] == [{"memcmp": {"offset": 40, "bytes": str(key)}}]
    assert snaps[0].address == key


def test_latest_blockhash():
    blockhash = Hash.new_unique()
    reader = _reader(lambda r: _result(r, {"context": {"slot": 1}, "value": {"blockhash": str(blockhash)}}))
    assert reader.get_latest_blockhash() == blockhash


def test_rpc_error_is_unavailable():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "busy"}})

    with pytest.raises(LedgerUnavailable, match="busy"):
        _reader(handler).get_slot()


def test_http_and_transport_errors_are_unavailable():
    with pytest.raises(LedgerUnavailable):
        _reader(lambda r: httpx.Response(503)).get_slot()

    def boom(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(LedgerUnavailable, match="timed out"):
        _reader(boom).get_slot()


def test_send_rejection_carries_logs():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "error": {
                    "code": -32002,
                    "message": "Transaction simulation failed",
                    "data": {"logs": ["Program log: insufficient funds"]},
                },
            },
        )

    with pytest.raises(SubmitRejected) as exc:
        _reader(handler).submit_transaction(b"raw")
    assert exc.value.code == -32002
    assert exc.value.logs == ["Program log: insufficient funds"]


def test_send_returns_signature():
    def handler(request):
        params = json.loads(request.content)["params"]
        assert base64.b64decode(params[0]) == b"raw"
        return _result(request, "5sig")

    assert _reader(handler).submit_transaction(b"raw") == "5sig"


@pytest.mark.parametrize(
    "status,expected",
    [
        (None, None),
        ({"err": None, "confirmationStatus": "processed"}, None),
        ({"err": None, "confirmationStatus": "confirmed"}, True),
        ({"err": None, "confirmationStatus": "finalized"}, True),
        ({"err": {"InstructionError": [2, {"Custom": 1}]}, "confirmationStatus": "confirmed"}, False),
    ],
)
def test_confirm_transaction(status, expected):
    reader = _reader(lambda r: _result(r, {"context": {"slot": 1}, "value": [status]}))
    assert reader.confirm_transaction("sig") is expected
