import pyarrow.parquet as pq
import pytest
from click.testing import CliRunner

from conftest import ALICE, BOB, VAULT, FakeProvider, StallingProvider, deposit_log, vault_calls, withdraw_log
from vaultscope.presentation import cli as cli_module

LOGS = [deposit_log(ALICE, 500, 500, block=999_000), deposit_log(BOB, 200, 200, block=999_100),
        withdraw_log(BOB, 200, 200, block=999_200)]


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider(LOGS)
    monkeypatch.setattr(cli_module, "HttpxRPC", lambda *args, **kwargs: fake)
    return fake


def test_analyze_prints_summary_and_writes_parquet(provider, tmp_path):
    out = tmp_path / "positions.parquet"
    result = CliRunner().invoke(cli_module.cli, [
        "analyze", "--vault", VAULT, "--pacing", "0", "--skip-vault-check", "--out", str(out),
    ])

    assert result.exit_code == 0, result.output
    assert "depositors=1" in result.output
    assert provider.closed

    table = pq.read_table(out)
    assert table.num_rows == 2
    assert sorted(table.column("net_position").to_pylist()) == ["0", "500"]


def test_analyze_include_withdrawn(provider):
    result = CliRunner().invoke(cli_module.cli, [
        "analyze", "--vault", VAULT, "--pacing", "0", "--skip-vault-check", "--include-withdrawn",
    ])
    assert result.exit_code == 0, result.output
    assert "depositors=2" in result.output


def test_analyze_reports_empty_ledger(monkeypatch):
    monkeypatch.setattr(cli_module, "HttpxRPC", lambda *args, **kwargs: FakeProvider([]))
    result = CliRunner().invoke(cli_module.cli, [
        "analyze", "--vault", VAULT, "--pacing", "0", "--skip-vault-check", "--scan-window", "1000",
    ])
    assert result.exit_code == 1
    assert "no deposit or withdrawal events" in result.output


def test_invalid_address_is_a_usage_error(provider):
    result = CliRunner().invoke(cli_module.cli, ["analyze", "--vault", "0x1234"])
    assert result.exit_code == 2


def test_discover_lists_ranges(provider):
    result = CliRunner().invoke(cli_module.cli, ["discover", "--vault", VAULT, "--chunk-size", "1000"])
    assert result.exit_code == 0, result.output
    assert "999,000" in result.output


def test_census_lists_topics(provider):
    result = CliRunner().invoke(cli_module.cli, ["census", "--vault", VAULT, "--window", "2000"])
    assert result.exit_code == 0, result.output
    assert "Deposit(" in result.output


def test_analyze_reads_vault_metadata_for_units(monkeypatch):
    fake = FakeProvider(LOGS, contract_calls=vault_calls())
    monkeypatch.setattr(cli_module, "HttpxRPC", lambda *args, **kwargs: fake)
    result = CliRunner().invoke(cli_module.cli, ["analyze", "--vault", VAULT, "--pacing", "0"])

    assert result.exit_code == 0, result.output
    assert "Test Vault" in result.output
    # tvl is the vault's totalAssets, scaled by the asset's 6 decimals
    assert "tvl=1,000.000000 USDC" in result.output
    assert "0.000500" in result.output


def test_analyze_rejects_non_vault(provider):
    result = CliRunner().invoke(cli_module.cli, ["analyze", "--vault", VAULT, "--pacing", "0"])
    assert result.exit_code == 1
    assert "not a valid ERC-4626 vault" in result.output
    assert provider.calls == []


def test_analyze_timeout_keeps_partial_results(monkeypatch):
    logs = [deposit_log(ALICE, 100, 100, block=998_100), deposit_log(BOB, 7, 7, block=999_900)]
    fake = StallingProvider(logs, stall_when=lambda a, b: (a, b) == (999_100, 999_900))
    monkeypatch.setattr(cli_module, "HttpxRPC", lambda *args, **kwargs: fake)
    result = CliRunner().invoke(cli_module.cli, [
        "analyze", "--vault", VAULT, "--skip-vault-check", "--from-block", "990000",
        "--scan-chunk-size", "1000", "--concurrency", "1", "--pacing", "0", "--timeout", "0.5",
    ])

    assert result.exit_code == 0, result.output
    assert "partial results" in result.output
    assert "depositors=1" in result.output
    assert fake.closed
