"""
LedgerReader: the crank's only window onto Solana.

The scheduler depends on the LedgerReader protocol; RpcLedgerReader implements
it over raw JSON-RPC with httpx. Every call carries a timeout. Transport
failures, timeouts and RPC errors on reads surface as LedgerUnavailable;
a refused sendTransaction surfaces as SubmitRejected.
"""

from __future__ import annotations

import base64
import itertools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import base58
import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey

from evore_crank.core.exceptions import LedgerUnavailable, SubmitRejected
from evore_crank.crank_logging import get_logger

logger = get_logger(__name__)

DEFAULT_COMMITMENT = "confirmed"
MULTIPLE_ACCOUNTS_LIMIT = 100


@dataclass(frozen=True)
class AccountSnapshot:
    address: Pubkey
    lamports: int
    data: bytes
    owner: Pubkey


@dataclass(frozen=True)
class MemcmpFilter:
    offset: int
    data: bytes

    def to_rpc(self) -> dict[str, Any]:
        return {"memcmp": {"offset": self.offset, "bytes": base58.b58encode(self.data).decode("ascii")}}


class LedgerReader(Protocol):
    def get_slot(self) -> int: ...

    def get_account(self, address: Pubkey) -> AccountSnapshot | None: ...

    def get_accounts(self, addresses: Sequence[Pubkey]) -> list[AccountSnapshot | None]: ...

    def get_program_accounts(
        self, program_id: Pubkey, filters: Sequence[MemcmpFilter]
    ) -> list[AccountSnapshot]: ...

    def get_latest_blockhash(self) -> Hash: ...

    def submit_transaction(self, raw: bytes) -> str: ...

    def confirm_transaction(self, signature: str) -> bool | None:
        """True when confirmed, False when it failed on-chain, None when not yet seen."""
        ...


def _account_from_rpc(address: Pubkey, value: dict[str, Any] | None) -> AccountSnapshot | None:
    if value is None:
        return None
    data_field = value.get("data") or ["", "base64"]
    raw = base64.b64decode(data_field[0]) if data_field[0] else b""
    return AccountSnapshot(
        address=address,
        lamports=int(value.get("lamports", 0)),
        data=raw,
        owner=Pubkey.from_string(value["owner"]),
    )


class RpcLedgerReader:
    """
    LedgerReader over Solana JSON-RPC (httpx.Client, one connection pool).

    getMultipleAccounts is issued in chunks of 100 fanned out over a thread
    pool; results are merged back in request order before returning.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = 10.0,
        concurrency: int = 4,
        commitment: str = DEFAULT_COMMITMENT,
        client: httpx.Client | None = None,
    ) -> None:
        self._rpc_url = rpc_url.rstrip("/")
        self._commitment = commitment
        self._concurrency = max(1, concurrency)
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_sec))
        self._ids = itertools.count(1)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RpcLedgerReader:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _post(self, method: str, params: list[Any]) -> dict[str, Any]:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self._client.post(self._rpc_url, json=body)
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            raise LedgerUnavailable(f"{method} timed out") from e
        except httpx.HTTPError as e:
            raise LedgerUnavailable(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerUnavailable(f"{method} returned invalid JSON") from e

    def _call(self, method: str, params: list[Any]) -> Any:
        data = self._post(method, params)
        if "error" in data:
            err = data["error"]
            raise LedgerUnavailable(
                f"Solana RPC error: {err.get('message', err)} (code={err.get('code')})"
            )
        if "result" not in data:
            raise LedgerUnavailable(f"{method} returned no result")
        return data["result"]

    def get_slot(self) -> int:
        return int(self._call("getSlot", [{"commitment": self._commitment}]))

    def get_account(self, address: Pubkey) -> AccountSnapshot | None:
        result = self._call(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        return _account_from_rpc(address, result.get("value"))

    def _get_multiple(self, chunk: Sequence[Pubkey]) -> list[AccountSnapshot | None]:
        result = self._call(
            "getMultipleAccounts",
            [[str(a) for a in chunk], {"encoding": "base64", "commitment": self._commitment}],
        )
        values = result.get("value") or []
        if len(values) != len(chunk):
            raise LedgerUnavailable(
                f"getMultipleAccounts returned {len(values)} accounts for {len(chunk)} addresses"
            )
        return [_account_from_rpc(a, v) for a, v in zip(chunk, values)]

    def get_accounts(self, addresses: Sequence[Pubkey]) -> list[AccountSnapshot | None]:
        chunks = [
            addresses[i : i + MULTIPLE_ACCOUNTS_LIMIT]
            for i in range(0, len(addresses), MULTIPLE_ACCOUNTS_LIMIT)
        ]
        if len(chunks) <= 1:
            return self._get_multiple(chunks[0]) if chunks else []
        with ThreadPoolExecutor(max_workers=min(self._concurrency, len(chunks))) as executor:
            parts = list(executor.map(self._get_multiple, chunks))
        return [snap for part in parts for snap in part]

    def get_program_accounts(
        self, program_id: Pubkey, filters: Sequence[MemcmpFilter]
    ) -> list[AccountSnapshot]:
        result = self._call(
            "getProgramAccounts",
            [
                str(program_id),
                {
                    "encoding": "base64",
                    "commitment": self._commitment,
                    "filters": [f.to_rpc() for f in filters],
                },
            ],
        )
        out: list[AccountSnapshot] = []
        for item in result or []:
            snap = _account_from_rpc(Pubkey.from_string(item["pubkey"]), item.get("account"))
            if snap is not None:
                out.append(snap)
        return out

    def get_latest_blockhash(self) -> Hash:
        result = self._call("getLatestBlockhash", [{"commitment": self._commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def submit_transaction(self, raw: bytes) -> str:
        data = self._post(
            "sendTransaction",
            [
                base64.b64encode(raw).decode("ascii"),
                {"encoding": "base64", "preflightCommitment": self._commitment},
            ],
        )
        if "error" in data:
            err = data["error"]
            logs = ((err.get("data") or {}).get("logs")) or []
            raise SubmitRejected(str(err.get("message", err)), code=err.get("code"), logs=logs)
        signature = data.get("result")
        if not signature:
            raise SubmitRejected("sendTransaction returned no signature")
        return str(signature)

    def confirm_transaction(self, signature: str) -> bool | None:
        result = self._call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": False}]
        )
        statuses = result.get("value") or [None]
        status = statuses[0]
        if status is None:
            return None
        if status.get("err") is not None:
            logger.debug("ledger_tx_status_failed", signature=signature, err=str(status["err"]))
            return False
        if status.get("confirmationStatus") in ("confirmed", "finalized"):
            return True
        return None
