from __future__ import annotations

import base64
import json

import httpx
import pytest
from solders.hash import Hash

from brickwall.chain.rpc import DasIndexer, JsonRpcClient, SolanaLedger, rpc_clients
from brickwall.errors import RpcError


def _client(handler) -> JsonRpcClient:
    return JsonRpcClient("http://rpc.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_submit_query_sends_jsonrpc_envelope() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"total": 0, "items": []}})

    rpc = _client(handler)
    result = await DasIndexer(rpc).fetch_owned_assets("Owner111", page=2, limit=50)

    assert result == {"total": 0, "items": []}
    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[0]["method"] == "getAssetsByOwner"
    assert seen[0]["params"] == {"ownerAddress": "Owner111", "page": 2, "limit": 50}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response,code",
    [
        (httpx.Response(503, text="busy"), "rpc_transport"),
        (httpx.Response(200, content=b"not json"), "rpc_bad_body"),
        (httpx.Response(200, json=[1, 2]), "rpc_bad_body"),
        (httpx.Response(200, json={"error": {"code": -32000, "message": "boom"}}), "rpc_error"),
    ],
)
async def test_submit_query_failures_raise_rpc_error(response: httpx.Response, code: str) -> None:
    rpc = _client(lambda request: response)
    with pytest.raises(RpcError) as ei:
        await rpc.submit_query("getHealth", [])
    assert ei.value.code == code


@pytest.mark.asyncio
async def test_ledger_decodes_blockhash_and_account_data() -> None:
    blockhash = Hash.new_unique()
    payload = b"\x01\x02\x03"

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["method"] == "getLatestBlockhash":
            result = {"context": {"slot": 1}, "value": {"blockhash": str(blockhash), "lastValidBlockHeight": 9}}
        elif body["params"][0] == "missing":
            result = {"context": {"slot": 1}, "value": None}
        else:
            result = {"context": {"slot": 1}, "value": {"data": [base64.b64encode(payload).decode(), "base64"]}}
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    ledger = SolanaLedger(_client(handler))

    assert await ledger.latest_blockhash() == blockhash
    assert await ledger.fetch_account("acct") == payload
    assert await ledger.fetch_account("missing") is None


@pytest.mark.asyncio
async def test_rpc_clients_share_one_connection_for_same_url() -> None:
    _ledger, _index, owned = rpc_clients(rpc_url="http://a", das_url="http://a", timeout_s=1.0)
    assert len(owned) == 1
    await owned[0].aclose()

    _ledger, _index, owned = rpc_clients(rpc_url="http://a", das_url="http://b", timeout_s=1.0)
    assert len(owned) == 2
    for c in owned:
        await c.aclose()
