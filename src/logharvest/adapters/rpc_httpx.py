from __future__ import annotations
import itertools
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..domain.errors import ProviderError
from ..domain.models import EventLog, LogFilter
from ..domain.value_types import Address
from ..ports.rpc import RPCClient

logger = logging.getLogger(__name__)


def _hex_int(x: Any) -> int | None:
    if x is None: return None
    if isinstance(x, int): return x
    s = str(x)
    return int(s, 16) if s.lower().startswith("0x") else int(s)

def _retry_after(response: httpx.Response) -> float | None:
    # only the delta-seconds form; HTTP-date values are ignored
    raw = response.headers.get("retry-after")
    try:
        return max(0.0, float(raw)) if raw is not None else None
    except ValueError:
        return None

def _lower_hex(x: Any) -> str:
    s = x if isinstance(x, str) else bytes(x).hex()
    s = s.lower()
    return s if s.startswith("0x") else "0x" + s

def parse_log(rl: dict[str, Any]) -> EventLog:
    return EventLog(
        address=Address(rl["address"].lower()),
        topics=tuple(_lower_hex(t) for t in rl.get("topics", [])),
        data_hex=str(rl.get("data") or "0x"),
        block_number=_hex_int(rl["blockNumber"]) or 0,
        tx_hash=(rl.get("transactionHash") or "").lower(),
        log_index=_hex_int(rl["logIndex"]) or 0,
        block_hash=(rl.get("blockHash") or None),
        block_timestamp=_hex_int(rl.get("blockTimestamp")),
        removed=bool(rl.get("removed", False)),
    )


class HttpxRPC(RPCClient):
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 20,
        max_conn: int = 64,
        *,
        http2: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(
            http2=http2 and transport is None,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn//2)),
            transport=transport,
        )

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = await self.client.post(self.rpc_url, json=payload)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            reason = "Too Many Requests" if code == 429 else e.response.reason_phrase
            raise ProviderError(f"{method} HTTP {code} {reason}", url=self.rpc_url, status_code=code,
                                retry_after_s=_retry_after(e.response), cause=e) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} transport failure: {type(e).__name__}", url=self.rpc_url, cause=e) from e

        data = r.json()
        if "error" in data:
            err = data["error"]
            if isinstance(err, dict):
                code, msg = err.get("code"), err.get("message")
            else:
                code, msg = None, str(err)
            raise ProviderError(f"{method} RPC error code={code} message={msg}", url=self.rpc_url, rpc_code=code)
        return data.get("result")

    async def get_logs(self, log_filter: LogFilter, from_block: int, to_block: int) -> list[EventLog]:
        res = await self._call("eth_getLogs", [log_filter.to_params(from_block, to_block)])
        typed = [parse_log(rl) for rl in (res or [])]
        logger.debug("eth_getLogs %d-%d -> %d logs", from_block, to_block, len(typed))
        return typed

    async def latest_block(self) -> int:
        return _hex_int(await self._call("eth_blockNumber", [])) or 0

    async def chain_id(self) -> int:
        return _hex_int(await self._call("eth_chainId", [])) or 0

    async def is_syncing(self) -> bool:
        # eth_syncing returns false or a progress object
        return bool(await self._call("eth_syncing", []))

    async def aclose(self) -> None:
        await self.client.aclose()


@dataclass(slots=True, frozen=True)
class ProviderStatus:
    chain_id: int
    latest_block: int
    syncing: bool
    connected: bool


async def provider_status(rpc: RPCClient) -> ProviderStatus:
    """Probe the node; a failed probe is reported as disconnected rather than raised."""
    try:
        cid = await rpc.chain_id()
        latest = await rpc.latest_block()
        syncing = await rpc.is_syncing()
    except Exception as e:
        logger.warning("provider status probe failed: %s", e)
        return ProviderStatus(chain_id=-1, latest_block=-1, syncing=False, connected=False)
    return ProviderStatus(chain_id=cid, latest_block=latest, syncing=syncing, connected=True)
