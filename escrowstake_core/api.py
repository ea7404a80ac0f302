"""
REST / HTTP API server for an EscrowStake pool.

Built on ``aiohttp``; serves one in-process ``StakingPool``.

Endpoints
---------
GET  /health                       Liveness + invariant check
GET  /stats                        Pool totals and C-Share rate
GET  /stakes/{account}             Open stakes of an account
GET  /pending/{account}/{stake_id} Pending reward and unstake preview
POST /tx/stake                     Open a stake
POST /tx/unstake                   Close a stake (by id or index)
POST /tx/claim                     Claim a stake's accrued reward
POST /distribute                   Run a daily distribution round
POST /admin/pause                  Pause new stakes
POST /admin/unpause                Resume new stakes
POST /admin/limits                 Change stake limits

Every time-dependent request accepts an optional ``now`` (Unix seconds)
so simulations can drive the pool clock; otherwise wall-clock time is
used.  Token amounts are accepted as decimal token strings
(``"1500.25"``) and returned as base-unit integers, serialised as
strings when they exceed JavaScript's safe-integer range.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).
- Staking errors are reported as ``{"error": code, "message": ...}``
  with internal balances stripped from the message.

Usage:
    api = APIServer(pool, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Optional

from aiohttp import web

from escrowstake_core.accounts import normalize_address
from escrowstake_core.errors import StakingError, Unauthorized
from escrowstake_core.precision import tokens

if TYPE_CHECKING:
    from escrowstake_core.config import APIConfig
    from escrowstake_core.staking import StakingPool
    from escrowstake_core.storage import StakeStore

logger = logging.getLogger("escrowstake.api")

# Largest integer a JavaScript number represents exactly.
_JS_SAFE_INT = 2 ** 53 - 1


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting non-integer input."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _safe_tokens(value: Any, name: str = "amount") -> int:
    """Decimal token amount to base units."""
    if isinstance(value, (bool, float)) or value is None:
        # floats cannot carry 18 decimals exactly
        raise web.HTTPBadRequest(text=f"{name} must be a decimal string or integer")
    try:
        return tokens(value)
    except ValueError:
        raise web.HTTPBadRequest(text=f"{name} is not a valid token amount")


def _safe_address(value: Any, name: str = "account") -> str:
    try:
        return normalize_address(value)
    except ValueError:
        raise web.HTTPBadRequest(text=f"{name} must be an Ethereum address")


def _safe_caller(body: dict) -> Optional[str]:
    caller = body.get("caller")
    if caller is None:
        return None
    return _safe_address(caller, "caller")


def _sanitize_validation_msg(msg: str) -> str:
    """Strip internal state (balances, amounts) from error messages."""
    if ":" in msg:
        return msg.split(":", 1)[0]
    return msg


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int) and abs(obj) > _JS_SAFE_INT:
        return str(obj)
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    return obj


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that keeps 256-bit integers exact for JS clients."""
    return json.dumps(_jsonable(obj), default=str)


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> [tokens, last_refill_timestamp]
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on POST/PUT/DELETE (header only, never query)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """CORS headers for explicitly listed origins; ``*`` is ignored."""

    allowed = set(origins) if origins else set()
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def _make_error_middleware():
    """Render rejected pool operations as JSON with their error code."""

    @web.middleware
    async def error_middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except StakingError as exc:
            status = 403 if isinstance(exc, Unauthorized) else 400
            logger.debug(f"{request.method} {request.path} rejected: {exc.code}")
            return web.json_response(
                {"error": exc.code, "message": _sanitize_validation_msg(str(exc))},
                status=status,
            )

    return error_middleware


class APIServer:
    """Thin aiohttp wrapper around a ``StakingPool``."""

    def __init__(
        self,
        pool: StakingPool,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        store: Optional[StakeStore] = None,
        clock: Callable[[], int] = lambda: int(time.time()),
    ):
        self.pool = pool
        self.host = host
        self.port = port
        self.store = store
        self.clock = clock
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536
        cfg = self._api_config
        if cfg is not None:
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))
        middlewares.append(_make_error_middleware())

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/stats", self._stats)
        app.router.add_get("/stakes/{account}", self._stakes)
        app.router.add_get("/pending/{account}/{stake_id}", self._pending)
        app.router.add_post("/tx/stake", self._submit_stake)
        app.router.add_post("/tx/unstake", self._submit_unstake)
        app.router.add_post("/tx/claim", self._submit_claim)
        app.router.add_post("/distribute", self._distribute)
        app.router.add_post("/admin/pause", self._admin_pause)
        app.router.add_post("/admin/unpause", self._admin_unpause)
        app.router.add_post("/admin/limits", self._admin_limits)

    def _now(self, source: Any) -> int:
        value = source.get("now")
        if value is None:
            return self.clock()
        return _safe_int(value, "now")

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save_pool(self.pool, getattr(self.pool, "token", None))

    # ── handlers ─────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        ok, msg = self.pool.verify_invariants()
        return web.json_response({
            "ok": ok,
            "paused": self.pool.paused,
            "open_stakes": len(self.pool.ledger),
            "checks": {"invariants": "ok" if ok else msg},
        }, status=200 if ok else 503)

    async def _stats(self, request: web.Request) -> web.Response:
        stats = self.pool.get_staking_stats(self._now(request.query))
        return web.json_response(stats, dumps=_json_dumps)

    async def _stakes(self, request: web.Request) -> web.Response:
        account = _safe_address(request.match_info["account"])
        now = self._now(request.query)
        stakes = [s.to_dict() for s in self.pool.get_stakes(account)]
        return web.json_response({
            "account": account,
            "stakes": stakes,
            "total_shares": self.pool.user_total_shares(account, now),
            "pending_reward": self.pool.pending_reward(account, now),
        }, dumps=_json_dumps)

    async def _pending(self, request: web.Request) -> web.Response:
        account = _safe_address(request.match_info["account"])
        stake_id = _safe_int(request.match_info["stake_id"], "stake_id")
        now = self._now(request.query)
        preview = self.pool.preview_unstake(account, stake_id, now)
        return web.json_response({
            "account": account,
            "stake_id": stake_id,
            "pending_reward": preview.reward,
            "unstake_preview": preview.to_dict(),
        }, dumps=_json_dumps)

    async def _submit_stake(self, request: web.Request) -> web.Response:
        """
        POST /tx/stake
        Body: {"account": "0x…", "amount": "1000", "days": 365, "now": 1700000000}
        """
        body = await _read_json(request)
        account = _safe_address(body.get("account"))
        amount = _safe_tokens(body.get("amount"))
        days = _safe_int(body.get("days"), "days")
        record = self.pool.stake(account, amount, days, self._now(body))
        self._persist()
        return web.json_response(
            {"status": "staked", "stake": record.to_dict()}, dumps=_json_dumps,
        )

    async def _submit_unstake(self, request: web.Request) -> web.Response:
        """
        POST /tx/unstake
        Body: {"account": "0x…", "stake_id": 3}  or  {"account": "0x…", "index": 0}
        """
        body = await _read_json(request)
        account = _safe_address(body.get("account"))
        now = self._now(body)
        if "stake_id" in body:
            result = self.pool.unstake(account, _safe_int(body["stake_id"], "stake_id"), now)
        elif "index" in body:
            result = self.pool.unstake_specific(account, _safe_int(body["index"], "index"), now)
        else:
            raise web.HTTPBadRequest(text="stake_id or index required")
        self._persist()
        return web.json_response(
            {"status": "unstaked", **result.to_dict()}, dumps=_json_dumps,
        )

    async def _submit_claim(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        account = _safe_address(body.get("account"))
        stake_id = _safe_int(body.get("stake_id"), "stake_id")
        paid = self.pool.claim_rewards(account, stake_id, self._now(body))
        self._persist()
        return web.json_response(
            {"status": "claimed", "stake_id": stake_id, "amount": paid}, dumps=_json_dumps,
        )

    async def _distribute(self, request: web.Request) -> web.Response:
        """
        POST /distribute
        Body: {"percentage_bps": 100, "now": …}   (both optional)
        """
        body = await _read_json(request)
        bps = body.get("percentage_bps")
        if bps is not None:
            bps = _safe_int(bps, "percentage_bps")
        payouts = self.pool.distribute_daily_rewards(self._now(body), bps)
        self._persist()
        return web.json_response({
            "status": "distributed",
            "recipients": len(payouts),
            "total": sum(payouts.values()),
            "payouts": payouts,
        }, dumps=_json_dumps)

    async def _admin_pause(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        self.pool.pause(caller=_safe_caller(body))
        self._persist()
        return web.json_response({"paused": True})

    async def _admin_unpause(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        self.pool.unpause(caller=_safe_caller(body))
        self._persist()
        return web.json_response({"paused": False})

    async def _admin_limits(self, request: web.Request) -> web.Response:
        """
        POST /admin/limits
        Body: {"min_amount": "1000", "max_amount": "1000000000",
               "min_days": 1, "max_days": 3641, "caller": "0x…"}
        """
        body = await _read_json(request)
        self.pool.set_limits(
            _safe_tokens(body.get("min_amount"), "min_amount"),
            _safe_tokens(body.get("max_amount"), "max_amount"),
            _safe_int(body.get("min_days"), "min_days"),
            _safe_int(body.get("max_days"), "max_days"),
            caller=_safe_caller(body),
        )
        self._persist()
        return web.json_response({
            "min_stake_amount": self.pool.min_stake_amount,
            "max_stake_amount": self.pool.max_stake_amount,
            "min_stake_days": self.pool.min_stake_days,
            "max_stake_days": self.pool.max_stake_days,
        }, dumps=_json_dumps)
