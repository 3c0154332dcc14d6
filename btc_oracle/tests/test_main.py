"""Unit tests for CLI argument and environment parsing."""

import os
from unittest.mock import patch

import pytest

from btc_oracle.main import (
    build_config,
    build_parser,
    parse_api_keys,
    parse_env_api_keys,
    parse_weights,
)
from btc_oracle.src.fetchers import DEFAULT_SOURCES


def config_from(argv: list[str], env: dict[str, str] | None = None):
    with patch.dict(os.environ, env or {}, clear=True):
        parser = build_parser()
        args = parser.parse_args(argv)
        return build_config(parser, args)


class TestParseApiKeys:
    """Test API key parsing from strings and the environment."""

    def test_parse_string(self) -> None:
        keys = parse_api_keys(" coingecko=demo:abc , CryptoCompare=xyz, junk ")
        assert keys == {"coingecko": "demo:abc", "cryptocompare": "xyz"}

    def test_empty(self) -> None:
        assert parse_api_keys(None) == {}
        assert parse_api_keys("") == {}

    def test_env_prefixes(self) -> None:
        env = {"API_KEY_CRYPTOCOMPARE": "abc", "APIKEY_COINGECKO": "demo:x", "API_KEY_EMPTY": ""}
        with patch.dict(os.environ, env, clear=True):
            assert parse_env_api_keys() == {"cryptocompare": "abc", "coingecko": "demo:x"}


class TestParseWeights:
    """Test weight override parsing."""

    def test_parse(self) -> None:
        assert parse_weights("Kraken=0.3, gemini=0.1") == {"kraken": 0.3, "gemini": 0.1}

    def test_not_a_number(self) -> None:
        with pytest.raises(ValueError):
            parse_weights("kraken=heavy")


class TestBuildConfig:
    """Test validation and conversion into OracleConfig."""

    def test_defaults(self) -> None:
        config = config_from([])

        assert config.sources == tuple(DEFAULT_SOURCES)
        assert config.fetch_period == 60
        assert config.submit_check_period == 300
        assert config.thresholds.min_time_between_updates_ms == 1_800_000
        assert config.thresholds.max_time_between_updates_ms == 21_600_000
        assert config.thresholds.min_source_count == 3
        assert not config.publishing_enabled

    def test_env_fallbacks(self) -> None:
        """Environment variables fill in unspecified flags."""
        config = config_from(
            [],
            {
                "SOURCES": "coinbase,kraken",
                "MIN_TIME_BETWEEN_UPDATES": "60",
                "MAX_TIME_BETWEEN_UPDATES": "120",
                "API_KEY_CRYPTOCOMPARE": "env-key",
            },
        )
        assert config.sources == ("coinbase", "kraken")
        assert config.thresholds.min_time_between_updates_ms == 60_000
        assert config.thresholds.max_time_between_updates_ms == 120_000
        assert config.api_keys == {"cryptocompare": "env-key"}

    def test_cli_overrides_env(self) -> None:
        config = config_from(
            ["--sources", "gemini", "--api-keys", "cryptocompare=cli-key", "--dry-run"],
            {"SOURCES": "coinbase", "API_KEY_CRYPTOCOMPARE": "env-key"},
        )
        assert config.sources == ("gemini",)
        assert config.api_keys == {"cryptocompare": "cli-key"}
        assert config.dry_run

    def test_weights(self) -> None:
        config = config_from(["--weights", "kraken=0.3"])
        assert config.source_weights == {"kraken": 0.3}

    @pytest.mark.parametrize(
        "argv",
        [
            ["--sources", "mtgox"],
            ["--sources", " , "],
            ["--fetch-period", "0"],
            ["--fetch-timeout", "0"],
            ["--min-source-count", "0"],
            ["--min-price-change", "-1"],
            ["--max-time-between-updates", "10", "--min-time-between-updates", "20"],
            ["--historical-days", "1"],
            ["--weights", "kraken=heavy"],
            ["--weights", "kraken=1.5"],
        ],
    )
    def test_invalid_arguments_exit(self, argv: list[str]) -> None:
        with pytest.raises(SystemExit):
            config_from(argv)
