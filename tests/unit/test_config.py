"""
test_config.py - Unit tests for EngineConfig
"""

import pytest
from datetime import timedelta

from bazaar import EngineConfig, TRADE_TTL_HOURS, BUYOUT_MULTIPLIER


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()
        assert config.trade_ttl_hours == TRADE_TTL_HOURS == 24
        assert config.buyout_multiplier == BUYOUT_MULTIPLIER == 3
        assert config.trade_ttl == timedelta(hours=24)
        assert config.max_auction_hours is None

    @pytest.mark.parametrize("kwargs", [
        {"trade_ttl_hours": 0},
        {"buyout_multiplier": 0},
        {"default_auction_hours": -1},
        {"price_window_days": 0},
        {"default_auction_hours": 48, "max_auction_hours": 24},
    ])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_from_env(self):
        config = EngineConfig.from_env({
            "BAZAAR_TRADE_TTL_HOURS": "12",
            "BAZAAR_BUYOUT_MULTIPLIER": " 4 ",
            "BAZAAR_MAX_AUCTION_HOURS": "72",
        })
        assert config.trade_ttl_hours == 12
        assert config.buyout_multiplier == 4
        assert config.max_auction_hours == 72
        assert config.default_auction_hours == 24

    def test_from_env_empty_uses_defaults(self):
        assert EngineConfig.from_env({}) == EngineConfig()

    def test_from_env_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("BAZAAR_PRICE_WINDOW_DAYS", "30")
        assert EngineConfig.from_env().price_window_days == 30

    def test_from_env_rejects_garbage(self):
        with pytest.raises(ValueError, match="BAZAAR_TRADE_TTL_HOURS"):
            EngineConfig.from_env({"BAZAAR_TRADE_TTL_HOURS": "a day"})
