import asyncio

import pytest

from conftest import (
    ALICE, BASE_TS, BOB, VAULT, FakeProvider, StallingProvider, deposit_log, transfer_log, vault_update_log,
    withdraw_log, words,
)
from vaultscope.application.ledger import PositionLedger
from vaultscope.application.scanner import ChunkedLogScanner, ScanResult
from vaultscope.domain.decoding import DEFAULT_TOPICS, DEPOSIT_T0
from vaultscope.domain.errors import TransientNetworkError
from vaultscope.domain.models import BlockRange, EventLog


def _fail_on(*ranges):
    bad = set(ranges)
    return lambda a, b: TransientNetworkError(f"boom {a}-{b}") if (a, b) in bad else None


def _scanner(provider, **kw):
    kw.setdefault("chunk_size", 2_000)
    return ChunkedLogScanner(provider, VAULT, DEFAULT_TOPICS, **kw)


async def test_failed_chunk_is_split_once_and_data_is_kept():
    logs = [deposit_log(ALICE, 10, 10, block=5_100), withdraw_log(BOB, 3, 3, block=6_500)]
    provider = FakeProvider(logs, fail_when=_fail_on((5_000, 6_999)))

    result = await _scanner(provider).scan(BlockRange(5_000, 6_999))

    assert provider.calls == [(5_000, 6_999), (5_000, 5_999), (6_000, 6_999)]
    assert [d.owner for d in result.deposits] == [ALICE]
    assert [w.owner for w in result.withdraws] == [BOB]
    assert result.skipped == []
    assert [c.status for c in result.chunks] == ["split"]


async def test_half_that_fails_again_is_skipped():
    logs = [deposit_log(ALICE, 10, 10, block=5_100), deposit_log(BOB, 3, 3, block=6_500)]
    provider = FakeProvider(logs, fail_when=_fail_on((5_000, 6_999), (6_000, 6_999)))

    result = await _scanner(provider).scan(BlockRange(5_000, 6_999))

    assert [d.owner for d in result.deposits] == [ALICE]
    assert result.skipped == [BlockRange(6_000, 6_999)]
    rec = result.chunks[0]
    assert rec.status == "split" and rec.error and "6000-6999" in rec.error
    # no deeper splitting
    assert len(provider.calls) == 3


async def test_single_block_chunk_failure_is_skipped_without_split():
    provider = FakeProvider([], fail_when=_fail_on((10, 10)))
    result = await _scanner(provider, chunk_size=1).scan(BlockRange(10, 11))
    assert result.skipped == [BlockRange(10, 10)]
    assert sorted(c.status for c in result.chunks) == ["done", "skipped"]
    assert provider.calls.count((10, 10)) == 1


async def test_chunks_cover_range_and_report_progress():
    logs = [deposit_log(ALICE, 1, 1, block=b) for b in (0, 2_500, 4_999)]
    seen = []
    result = await _scanner(FakeProvider(logs), on_chunk=seen.append, concurrency=3).scan(BlockRange(0, 4_999))

    assert sorted((c.from_block, c.to_block) for c in seen) == [(0, 1_999), (2_000, 3_999), (4_000, 4_999)]
    assert all(c.status == "done" for c in seen)
    assert sum(c.decoded for c in seen) == 3
    assert result.logs == 3


async def test_event_budget_stops_scan_early():
    logs = [deposit_log(ALICE, 1, 1, block=b * 100) for b in range(10)]
    scanner = _scanner(FakeProvider(logs), chunk_size=100, max_event_budget=3, concurrency=1)

    result = await scanner.scan(BlockRange(0, 999))

    assert len(result.deposits) == 3
    assert result.budget_exhausted
    assert len(result.chunks) == 3


async def test_accumulator_is_threaded_across_scans():
    logs = [deposit_log(ALICE, 1, 1, block=10), transfer_log(ALICE, BOB, 1, block=3_010)]
    scanner = _scanner(FakeProvider(logs))
    acc = ScanResult()
    await scanner.scan(BlockRange(0, 99), into=acc)
    await scanner.scan(BlockRange(3_000, 3_099), into=acc)
    assert (len(acc.deposits), len(acc.transfers)) == (1, 1)
    assert acc.classified == 2
    assert acc.has_canonical


async def test_malformed_and_signal_logs_do_not_classify():
    bad = EventLog(VAULT, (DEPOSIT_T0,), words(1), 50, "0xbad", 0)
    logs = [bad, vault_update_log(10, 10, block=60)]
    result = await _scanner(FakeProvider(logs)).scan(BlockRange(0, 99))
    assert result.unknown == 1
    assert len(result.vault_updates) == 1
    assert result.classified == 0
    assert not result.has_canonical


async def test_sort_restores_chain_order():
    logs = [deposit_log(ALICE, 1, 1, block=b, log_index=i) for i, b in enumerate((4_100, 10, 2_050))]
    logs.append(deposit_log(BOB, 1, 1, block=10, log_index=5))
    result = await _scanner(FakeProvider(logs), concurrency=4).scan(BlockRange(0, 4_999))
    result.sort()
    assert [(d.block_number, d.log_index) for d in result.deposits] == [(10, 1), (10, 5), (2_050, 2), (4_100, 0)]


async def test_ledger_is_folded_chunk_by_chunk():
    logs = [deposit_log(ALICE, 10, 10, block=100), withdraw_log(ALICE, 4, 4, block=2_100),
            transfer_log(ALICE, BOB, 1, block=2_200)]
    ledger = PositionLedger()
    sizes = []
    scanner = _scanner(FakeProvider(logs), ledger=ledger, concurrency=1,
                       on_chunk=lambda rec: sizes.append(len(ledger)))

    await scanner.scan(BlockRange(0, 3_999))

    assert sizes == [1, 1]
    pos = ledger.get(ALICE)
    assert (pos.total_deposits, pos.total_withdrawals, pos.net_shares) == (10, 4, 6)
    assert (pos.first_activity, pos.last_activity) == (BASE_TS + 100, BASE_TS + 2_100)
    assert BOB not in ledger


async def test_cancelled_scan_leaves_ledger_and_accumulator_in_step():
    logs = [deposit_log(ALICE, 1, 1, block=b) for b in (10, 1_010, 2_010)]
    provider = StallingProvider(logs, stall_when=lambda a, b: a == 2_000)
    ledger, acc = PositionLedger(), ScanResult()
    scanner = _scanner(provider, chunk_size=1_000, ledger=ledger)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(scanner.scan(BlockRange(0, 2_999), into=acc), 0.5)

    assert len(acc.deposits) == 2
    assert ledger.get(ALICE).deposit_count == 2
    assert sorted(c.from_block for c in acc.chunks) == [0, 1_000]
