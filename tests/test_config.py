"""
Unit tests for configuration loading.
"""

from decimal import Decimal

import pytest

from forward_payments.core.config import (
    ConfigError,
    SessionConfig,
    SessionParameters,
    load_session_config,
)
from forward_payments.core.environment import build_environment, load_env_file
from tests.conftest import DESTINATION


class TestSessionConfig:
    """Test SessionConfig parsing."""

    def test_defaults(self) -> None:
        config = SessionConfig.from_mapping({})

        assert config == SessionConfig()
        assert config.payment_window_seconds == 300
        assert config.poll_interval_ms == 5000
        assert config.poll_interval_seconds == 5.0
        assert config.network_fee_reserve == 5000
        assert config.max_amount == Decimal("100")
        assert config.default_amount == Decimal("0.01")
        assert config.default_destination is None

    def test_values_from_mapping(self) -> None:
        config = SessionConfig.from_mapping(
            {
                "FWD_RPC_URL": "https://bsc.example/",
                "FWD_CHAIN_ID": "56",
                "FWD_NETWORK": "bsc",
                "FWD_CURRENCY_SYMBOL": "BNB",
                "FWD_PAYMENT_WINDOW_SECONDS": "120",
                "FWD_POLL_INTERVAL_MS": "2500",
                "FWD_NETWORK_FEE_RESERVE": "105000000000000",
                "FWD_MAX_AMOUNT": "2.5",
                "FWD_DESTINATION_ADDRESS": DESTINATION.lower(),
            }
        )

        assert config.rpc_url == "https://bsc.example"
        assert config.chain_id == 56
        assert config.currency_symbol == "BNB"
        assert config.payment_window_seconds == 120
        assert config.poll_interval_seconds == 2.5
        assert config.network_fee_reserve == 105000000000000
        assert config.max_amount == Decimal("2.5")
        assert config.default_destination == DESTINATION

    @pytest.mark.parametrize(
        "key,value",
        [
            ("FWD_CHAIN_ID", "mainnet"),
            ("FWD_CHAIN_ID", "0"),
            ("FWD_PAYMENT_WINDOW_SECONDS", "-1"),
            ("FWD_POLL_INTERVAL_MS", "0"),
            ("FWD_NETWORK_FEE_RESERVE", "-5"),
            ("FWD_MAX_AMOUNT", "lots"),
            ("FWD_MAX_AMOUNT", "0"),
            ("FWD_TOKEN_DECIMALS", "99"),
            ("FWD_RPC_URL", "ftp://node"),
            ("FWD_DESTINATION_ADDRESS", "nowhere"),
        ],
    )
    def test_invalid_values(self, key, value) -> None:
        with pytest.raises(ConfigError):
            SessionConfig.from_mapping({key: value})

    def test_to_base_units(self) -> None:
        assert SessionConfig().to_base_units(Decimal("0.01")) == 10**16
        assert SessionConfig(token_decimals=9).to_base_units(Decimal("0.01")) == 10**7


class TestLoading:
    """Test layering of env file, environment and overrides."""

    def test_env_file_is_read(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n"
            "export FWD_CHAIN_ID=137\n"
            "FWD_NETWORK='polygon'\n"
            'FWD_CURRENCY_SYMBOL="POL"\n'
            "UNRELATED=1\n"
            "garbage line\n",
            encoding="utf-8",
        )

        config = load_session_config(env_file=str(env_file), base={})

        assert config.chain_id == 137
        assert config.network == "polygon"
        assert config.currency_symbol == "POL"

    def test_precedence(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("FWD_CHAIN_ID=10\nFWD_GAS_LIMIT=30000\n", encoding="utf-8")

        config = load_session_config(
            env_file=str(env_file),
            base={"FWD_CHAIN_ID": "20"},
            overrides={"FWD_POLL_INTERVAL_MS": "1000"},
            chain_id=30,
        )

        assert config.chain_id == 30
        assert config.gas_limit == 30000
        assert config.poll_interval_ms == 1000

    def test_parameters_and_keywords(self) -> None:
        parameters = SessionParameters(chain_id=5, max_amount="10")
        config = load_session_config(
            env_file=None, base={}, parameters=parameters, max_amount=Decimal("20")
        )
        assert config.chain_id == 5
        assert config.max_amount == Decimal("20")

    def test_unknown_keyword(self) -> None:
        with pytest.raises(TypeError):
            load_session_config(env_file=None, base={}, colour="blue")

    def test_missing_env_file_is_ignored(self, tmp_path) -> None:
        config = load_session_config(env_file=str(tmp_path / "absent.env"), base={})
        assert config == SessionConfig()


class TestEnvironment:
    """Test the raw environment helpers."""

    def test_build_environment_keeps_only_prefixed_keys(self) -> None:
        environment = build_environment(
            env_file=None, base={"FWD_NETWORK": "bsc", "HOME": "/root"}
        )
        assert dict(environment.variables) == {"FWD_NETWORK": "bsc"}
        assert environment.get("FWD_NETWORK") == "bsc"
        assert environment.get("FWD_CHAIN_ID", "1") == "1"

    def test_empty_values_fall_back(self) -> None:
        environment = build_environment(env_file=None, base={"FWD_NETWORK": ""})
        assert environment.get("FWD_NETWORK", "ethereum") == "ethereum"

    def test_load_env_file_does_not_clobber(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("FWD_NETWORK=bsc\nFWD_CHAIN_ID=56\n", encoding="utf-8")
        target = {"FWD_NETWORK": "ethereum"}

        merged = load_env_file(str(env_file), environ=target)

        assert merged == {"FWD_NETWORK": "ethereum", "FWD_CHAIN_ID": "56"}
