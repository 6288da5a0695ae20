from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict

import aiohttp

if TYPE_CHECKING:
    from ..runner import SymbolReport

log = logging.getLogger("webhook")


def format_price(x: float) -> str:
    """'#.#####' then strip trailing zeros/dot."""
    s = f"{x:.5f}"
    s = s.rstrip("0").rstrip(".")
    return s or "0"


def build_payload(report: "SymbolReport", secret: str = "") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "symbol": report.symbol,
        "tf": report.timeframe,
        "signals": [
            {
                "time_ms": s.time_ms,
                "direction": s.direction,
                "entry": format_price(s.entry),
                "sl": format_price(s.stop_loss),
                "tp": format_price(s.take_profit),
                "signal_id": s.signal_id,
            }
            for s in report.signals
        ],
    }
    if secret:
        payload["secret"] = secret
    if report.result is not None:
        sm = report.result.summary
        payload["stats"] = {
            "trades": sm.total,
            "wins": sm.wins,
            "losses": sm.losses,
            "timeouts": sm.timeouts,
            "win_rate": round(sm.win_rate, 2),
            "avg_r": round(sm.avg_r, 4),
            "expectancy_r": round(sm.expectancy, 4),
            "avg_hold_bars": round(sm.avg_hold_bars, 2),
        }
    if report.health:
        payload["health"] = report.health
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled) and bool(url)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_report(self, report: "SymbolReport") -> None:
        if not self.enabled:
            return

        body = json.dumps(build_payload(report, self.secret), separators=(",", ":"))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status symbol=%s status=%s body=%s", report.symbol, resp.status, text[:200])
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            # Log but do not crash the run
            log.warning("webhook_post_failed symbol=%s err=%s", report.symbol, e)
