from __future__ import annotations

import base64
import itertools
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from solders.hash import Hash

from brickwall.chain.event_log import log_event
from brickwall.errors import RpcError

Json = Dict[str, Any]

log = logging.getLogger("brickwall.rpc")


class AssetIndex(Protocol):
    """Compressed-asset indexer (DAS API) surface used by the oracle and resolver."""

    async def fetch_owned_assets(self, owner: str, *, page: int, limit: int) -> Json: ...

    async def fetch_proof(self, asset_id: str) -> Optional[Json]: ...

    async def fetch_asset(self, asset_id: str) -> Optional[Json]: ...


class LedgerClient(Protocol):
    """Ledger node surface used by the assembler and the confirmation flow."""

    async def latest_blockhash(self) -> Hash: ...

    async def fetch_account(self, address: str) -> Optional[bytes]: ...

    async def fetch_transaction(self, signature: str) -> Optional[Json]: ...


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 client over httpx.

    Transport failures, non-2xx responses, malformed bodies and RPC-level
    `error` objects all raise RpcError.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = str(url)
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def submit_query(self, method: str, params: Any) -> Any:
        payload: Json = {
            "jsonrpc": "2.0",
            "id": f"brickwall-{next(self._ids)}",
            "method": method,
            "params": params,
        }
        try:
            resp = await self._client.post(self.url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            log_event(log, "rpc_transport_error", level=logging.WARNING, method=method, error=str(e))
            raise RpcError("rpc_transport", f"{method} request failed", {"method": method, "error": str(e)}) from e
        except ValueError as e:
            raise RpcError("rpc_bad_body", f"{method} returned invalid JSON", {"method": method}) from e

        if not isinstance(body, dict):
            raise RpcError("rpc_bad_body", f"{method} returned a non-object body", {"method": method})

        err = body.get("error")
        if err:
            log_event(log, "rpc_error", level=logging.WARNING, method=method, error=err)
            raise RpcError("rpc_error", f"{method} returned an error", {"method": method, "error": err})

        return body.get("result")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DasIndexer:
    """AssetIndex backed by a DAS-compatible JSON-RPC endpoint."""

    def __init__(self, rpc: JsonRpcClient) -> None:
        self.rpc = rpc

    async def fetch_owned_assets(self, owner: str, *, page: int, limit: int) -> Json:
        result = await self.rpc.submit_query(
            "getAssetsByOwner",
            {"ownerAddress": str(owner), "page": int(page), "limit": int(limit)},
        )
        if not isinstance(result, dict):
            raise RpcError("rpc_bad_result", "getAssetsByOwner returned no result", {"owner": str(owner), "page": page})
        return result

    async def fetch_proof(self, asset_id: str) -> Optional[Json]:
        result = await self.rpc.submit_query("getAssetProof", {"id": str(asset_id)})
        return result if isinstance(result, dict) else None

    async def fetch_asset(self, asset_id: str) -> Optional[Json]:
        result = await self.rpc.submit_query("getAsset", {"id": str(asset_id)})
        return result if isinstance(result, dict) else None


class SolanaLedger:
    """LedgerClient backed by a Solana JSON-RPC node."""

    def __init__(self, rpc: JsonRpcClient) -> None:
        self.rpc = rpc

    async def latest_blockhash(self) -> Hash:
        result = await self.rpc.submit_query("getLatestBlockhash", [{"commitment": "finalized"}])
        value = result.get("value") if isinstance(result, dict) else None
        blockhash = value.get("blockhash") if isinstance(value, dict) else None
        if not blockhash:
            raise RpcError("rpc_bad_result", "getLatestBlockhash returned no blockhash", {})
        return Hash.from_string(str(blockhash))

    async def fetch_account(self, address: str) -> Optional[bytes]:
        result = await self.rpc.submit_query(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": "confirmed"}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            return None
        data = value.get("data")
        if not isinstance(data, list) or not data:
            raise RpcError("rpc_bad_result", "getAccountInfo returned no data", {"address": str(address)})
        return base64.b64decode(str(data[0]))

    async def fetch_transaction(self, signature: str) -> Optional[Json]:
        result = await self.rpc.submit_query(
            "getTransaction",
            [
                str(signature),
                {"encoding": "base64", "commitment": "finalized", "maxSupportedTransactionVersion": 0},
            ],
        )
        return result if isinstance(result, dict) else None


def rpc_clients(*, rpc_url: str, das_url: str, timeout_s: float) -> tuple[SolanaLedger, DasIndexer, List[JsonRpcClient]]:
    """Build ledger + indexer clients, sharing one connection when the URLs match."""
    ledger_rpc = JsonRpcClient(rpc_url, timeout_s=timeout_s)
    das_rpc = ledger_rpc if das_url == rpc_url else JsonRpcClient(das_url, timeout_s=timeout_s)
    owned = [ledger_rpc] if das_rpc is ledger_rpc else [ledger_rpc, das_rpc]
    return SolanaLedger(ledger_rpc), DasIndexer(das_rpc), owned
