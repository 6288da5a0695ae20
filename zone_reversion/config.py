from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
import hashlib
import json
from typing import Any, Dict, List, Optional
import os
import yaml


class ConfigError(ValueError):
    """Raised when a config file is missing keys or carries bad values."""


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass(frozen=True)
class StrategyConfig:
    # Oscillator + regime
    rsi_low: float
    rsi_high: float
    adx_max: float

    # Trend guard (zone timeline)
    adx_trend_max: float
    slope_bps_max: float

    # Zone proximity / quality
    level_tol_bps: float
    min_touches: int

    # Confirmation / rejection
    use_confirmation: bool
    require_touch: bool
    min_rejection_bps: float
    max_body_frac: float
    min_wick_frac: float
    confirm_close_away_bps: float

    # Volatility guard
    use_vol_guard: bool
    atr_lookback: int
    max_atr_multiple: float

    # Retest entry window
    retest_bars: int
    retest_tol_bps: float

    # Risk model / exits
    atr_sl: float
    rr: float
    timeout_bars: int

    # Debounce
    cooldown_bars: int

    # Bars skipped at the start of every scan
    warmup_bars: int = 50

    def signature(self) -> Dict[str, object]:
        """Detection inputs only; timeout_bars affects the backtest, not signal ids."""
        sig = asdict(self)
        sig.pop("timeout_bars")
        return sig

    def validate(self) -> List[str]:
        errs: List[str] = []
        for f in fields(self):
            v = getattr(self, f.name)
            if f.type == "bool":
                if not isinstance(v, bool):
                    errs.append(f"{f.name} must be a bool (got {v!r})")
            elif f.type == "int":
                if isinstance(v, bool) or not isinstance(v, int):
                    errs.append(f"{f.name} must be an int (got {v!r})")
            elif isinstance(v, bool) or not isinstance(v, (int, float)):
                errs.append(f"{f.name} must be a number (got {v!r})")
        if errs:
            return errs

        if not self.rsi_low < self.rsi_high:
            errs.append("rsi_low must be below rsi_high")
        if self.retest_bars < 1:
            errs.append("retest_bars must be >= 1")
        if self.timeout_bars < 1:
            errs.append("timeout_bars must be >= 1")
        if self.atr_lookback < 1:
            errs.append("atr_lookback must be >= 1")
        if self.cooldown_bars < 0 or self.warmup_bars < 0 or self.min_touches < 0:
            errs.append("cooldown_bars, warmup_bars and min_touches must be >= 0")
        if self.atr_sl <= 0 or self.rr <= 0:
            errs.append("atr_sl and rr must be > 0")
        return errs


@dataclass(frozen=True)
class ZonesConfig:
    window_size: int = 120
    cluster_bps: float = 15.0
    ema_length: int = 20
    slope_lookback: int = 5


@dataclass
class DataConfig:
    dir: str = "cache/json"
    symbols: List[str] = None
    htf: str = "4H"
    ltf: str = "1H"
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    compute_indicators: bool = True


@dataclass
class RunnerConfig:
    concurrency: int = 4
    ignore_trend: bool = False
    min_trades: int = 10
    min_win_rate: float = 55.0


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AppConfig:
    name: str = "Zone Reversion"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    data: DataConfig
    zones: ZonesConfig
    strategy: StrategyConfig
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


def strategy_from_dict(raw: Dict[str, Any]) -> StrategyConfig:
    """Build a StrategyConfig, failing on missing or unknown keys."""
    if not isinstance(raw, dict):
        raise ConfigError("section 'strategy' must be a mapping")
    known = {f.name for f in fields(StrategyConfig)}
    required = {f.name for f in fields(StrategyConfig) if f.name != "warmup_bars"}
    missing = sorted(required - set(raw))
    unknown = sorted(set(raw) - known)
    errs: List[str] = []
    if missing:
        errs.append("missing strategy keys: " + ", ".join(missing))
    if unknown:
        errs.append("unknown strategy keys: " + ", ".join(unknown))
    if errs:
        raise ConfigError("; ".join(errs))

    cfg = StrategyConfig(**raw)
    errs = cfg.validate()
    if errs:
        raise ConfigError("invalid strategy config: " + "; ".join(errs))
    return cfg


def strategy_signature(cfg: StrategyConfig) -> str:
    payload = json.dumps(cfg.signature(), sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _section(raw: Dict[str, Any], name: str, cls):
    sec = raw.get(name) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"section '{name}' must be a mapping")
    try:
        return cls(**sec)
    except TypeError as e:
        raise ConfigError(f"section '{name}': {e}") from e


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if "strategy" not in raw:
        raise ConfigError("config has no 'strategy' section")

    cfg = Config(
        app=_section(raw, "app", AppConfig),
        data=_section(raw, "data", DataConfig),
        zones=_section(raw, "zones", ZonesConfig),
        strategy=strategy_from_dict(raw.get("strategy") or {}),
        runner=_section(raw, "runner", RunnerConfig),
        webhook=_section(raw, "webhook", WebhookConfig),
    )

    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    if cfg.data.symbols is None:
        cfg.data.symbols = []

    # Allow MR_SYMBOLS="EUR-USD,GBP-USD"
    sym_env = os.getenv("MR_SYMBOLS")
    if sym_env:
        cfg.data.symbols = [x.strip().upper() for x in sym_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    return cfg
