"""
Unit tests for the command-line interface.
"""

import argparse
import asyncio
import logging

import pytest

from forward_payments import cli
from forward_payments.core.session import SessionState
from tests.conftest import DESTINATION, FakeLedger


class TestParser:
    """Test argument parsing."""

    def test_defaults(self) -> None:
        args = cli.build_parser().parse_args([])
        assert args.env_file == ".env"
        assert args.set is None
        assert args.destination is None
        assert args.amount is None
        assert args.json is False

    def test_overrides(self) -> None:
        args = cli.build_parser().parse_args(
            ["--set", "FWD_CHAIN_ID=56", "--set", "FWD_NETWORK=bsc", "--amount", "0.2"]
        )
        assert cli._collect_overrides(args.set) == {"FWD_CHAIN_ID": "56", "FWD_NETWORK": "bsc"}
        assert args.amount == "0.2"

    @pytest.mark.parametrize("value", ["novalue", "=1"])
    def test_bad_override(self, value) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            cli._env_override(value)


class TestRunCli:
    """Test exit codes of the CLI entry point."""

    def test_invalid_configuration(self, tmp_path) -> None:
        code = cli.run_cli(
            ["--env-file", str(tmp_path / "none"), "--set", "FWD_CHAIN_ID=abc", "--destination", DESTINATION]
        )
        assert code == cli.EXIT_INVALID

    def test_missing_destination(self, tmp_path) -> None:
        assert cli.run_cli(["--env-file", str(tmp_path / "none")]) == cli.EXIT_INVALID

    def test_invalid_amount(self, tmp_path) -> None:
        code = cli.run_cli(
            ["--env-file", str(tmp_path / "none"), "--destination", DESTINATION, "--amount", "500"]
        )
        assert code == cli.EXIT_INVALID

    def test_invalid_destination(self, tmp_path) -> None:
        code = cli.run_cli(
            ["--env-file", str(tmp_path / "none"), "--destination", "0xnope", "--json"]
        )
        assert code == cli.EXIT_INVALID


class TestRunSession:
    """Test the session driver used by the CLI."""

    @pytest.mark.asyncio
    async def test_forwarded_exit_code(self, session, ledger, scheduler) -> None:
        presenter = cli.LoggingPresenter(session)
        runner = cli._run_session(session, presenter, DESTINATION, "0.01")

        task = asyncio.create_task(runner)
        await asyncio.sleep(0)
        ledger.balances[ledger.accounts[0].address] = 10**16
        await scheduler.advance(5)

        assert await task == cli.EXIT_FORWARDED
        assert session.state is SessionState.SETUP

    @pytest.mark.asyncio
    async def test_expired_exit_code(self, session, scheduler) -> None:
        presenter = cli.JsonPresenter(session)
        task = asyncio.create_task(cli._run_session(session, presenter, DESTINATION, "0.01"))
        await asyncio.sleep(0)
        await scheduler.advance(300)

        assert await task == cli.EXIT_EXPIRED

    @pytest.mark.asyncio
    async def test_invalid_amount_exit_code(self, session, ledger: FakeLedger) -> None:
        presenter = cli.LoggingPresenter(session)
        code = await cli._run_session(session, presenter, DESTINATION, "abc")
        assert code == cli.EXIT_INVALID
        assert ledger.create_calls == 0


class TestFeeReserveWarning:
    """Test the startup warning about an unusable fee reserve."""

    def test_warns_when_reserve_below_gas_limit(self, tmp_path, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            cli.run_cli(["--env-file", str(tmp_path / "none")])
        assert "FWD_NETWORK_FEE_RESERVE=5000 is below FWD_GAS_LIMIT=21000" in caplog.text

    def test_no_warning_with_sufficient_reserve(self, tmp_path, caplog) -> None:
        with caplog.at_level(logging.WARNING):
            cli.run_cli(
                ["--env-file", str(tmp_path / "none"), "--set", "FWD_NETWORK_FEE_RESERVE=10000000000000000"]
            )
        assert "FWD_NETWORK_FEE_RESERVE" not in caplog.text
