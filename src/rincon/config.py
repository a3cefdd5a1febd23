from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys

from rincon.domain.errors import ValidationError
from rincon.domain.pricing import PricingPolicy


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    backup_dir: Path


@dataclass(frozen=True)
class Settings:
    remote_url: Optional[str] = None
    remote_key: Optional[str] = None
    remote_timeout: float = 10.0
    pricing: PricingPolicy = PricingPolicy()

    @property
    def use_remote(self) -> bool:
        return bool(self.remote_url and self.remote_key)


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "RinconFit") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    backups = base / "backups"
    db = base / "sales.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, backup_dir=backups)


def _number(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{key} must be a number. Received: {raw!r}") from exc


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = PricingPolicy()

    bundle_price = _number(env, "RINCON_BUNDLE_PRICE", defaults.bundle_price)
    affiliate_rate = _number(env, "RINCON_AFFILIATE_RATE", defaults.affiliate_rate)
    if bundle_price < 0 or not 0 <= affiliate_rate <= 1:
        raise ValidationError("RINCON_BUNDLE_PRICE must be >= 0 and RINCON_AFFILIATE_RATE within [0, 1].")

    return Settings(
        remote_url=env.get("RINCON_REMOTE_URL", "").strip() or None,
        remote_key=env.get("RINCON_REMOTE_KEY", "").strip() or None,
        remote_timeout=_number(env, "RINCON_REMOTE_TIMEOUT", 10.0),
        pricing=PricingPolicy(bundle_price=int(bundle_price), affiliate_rate=affiliate_rate),
    )
