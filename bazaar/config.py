"""
config.py - Engine configuration

Engine constants live in bazaar.core. EngineConfig bundles them so a
deployment can override them without touching code, either directly or from
BAZAAR_* environment variables.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional
import os

from .core import (
    TRADE_TTL_HOURS, BUYOUT_MULTIPLIER,
    DEFAULT_AUCTION_HOURS, DEFAULT_PRICE_WINDOW_DAYS,
)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Tunable engine parameters.

    Attributes:
        trade_ttl_hours: Age after which a pending trade is swept to expired
        buyout_multiplier: buyout_price = starting_bid * buyout_multiplier
        default_auction_hours: Listing duration when the caller gives none
        max_auction_hours: Upper bound on a listing duration (None = unbounded)
        price_window_days: Default window for market price statistics
    """
    trade_ttl_hours: int = TRADE_TTL_HOURS
    buyout_multiplier: int = BUYOUT_MULTIPLIER
    default_auction_hours: int = DEFAULT_AUCTION_HOURS
    max_auction_hours: Optional[int] = None
    price_window_days: int = DEFAULT_PRICE_WINDOW_DAYS

    def __post_init__(self):
        if self.trade_ttl_hours <= 0:
            raise ValueError(f"trade_ttl_hours must be positive, got {self.trade_ttl_hours}")
        if self.buyout_multiplier < 1:
            raise ValueError(f"buyout_multiplier must be at least 1, got {self.buyout_multiplier}")
        if self.default_auction_hours <= 0:
            raise ValueError(
                f"default_auction_hours must be positive, got {self.default_auction_hours}"
            )
        if self.max_auction_hours is not None and self.max_auction_hours < self.default_auction_hours:
            raise ValueError("max_auction_hours cannot be below default_auction_hours")
        if self.price_window_days <= 0:
            raise ValueError(f"price_window_days must be positive, got {self.price_window_days}")

    @property
    def trade_ttl(self) -> timedelta:
        return timedelta(hours=self.trade_ttl_hours)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'EngineConfig':
        """
        Build a config from BAZAAR_* variables, falling back to the defaults.

        Recognised: BAZAAR_TRADE_TTL_HOURS, BAZAAR_BUYOUT_MULTIPLIER,
        BAZAAR_DEFAULT_AUCTION_HOURS, BAZAAR_MAX_AUCTION_HOURS,
        BAZAAR_PRICE_WINDOW_DAYS.
        """
        env = os.environ if environ is None else environ

        def _int(name: str, default: Optional[int]) -> Optional[int]:
            raw = (env.get(name) or "").strip()
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {raw!r}") from None

        return cls(
            trade_ttl_hours=_int("BAZAAR_TRADE_TTL_HOURS", TRADE_TTL_HOURS),
            buyout_multiplier=_int("BAZAAR_BUYOUT_MULTIPLIER", BUYOUT_MULTIPLIER),
            default_auction_hours=_int("BAZAAR_DEFAULT_AUCTION_HOURS", DEFAULT_AUCTION_HOURS),
            max_auction_hours=_int("BAZAAR_MAX_AUCTION_HOURS", None),
            price_window_days=_int("BAZAAR_PRICE_WINDOW_DAYS", DEFAULT_PRICE_WINDOW_DAYS),
        )
