import pytest

from conftest import (
    ALICE, BOB, VAULT, deposit_log, deposit_made_log, transfer_log, vault_update_log,
    withdraw_log, words,
)
from vaultscope.domain.decoding import (
    DEFAULT_TOPICS, DEPOSIT_T0, KNOWN_SIGNATURES, TRANSFER_T0, EventTopicSet, decode_log,
    event_topic, label_topics,
)
from vaultscope.domain.errors import DecodeError
from vaultscope.domain.models import (
    DepositEvent, EventLog, TransferEvent, UnknownEvent, VaultUpdateEvent, WithdrawEvent,
)
from vaultscope.domain.value_types import Topic0


def test_known_topic_hashes_match_signatures():
    for topic, sig in KNOWN_SIGNATURES.items():
        assert event_topic(sig) == topic


def test_decode_deposit_reads_owner_from_second_indexed_topic():
    ev = decode_log(deposit_log(ALICE, 10**30, 7, block=42, log_index=3, sender=BOB))
    assert isinstance(ev, DepositEvent)
    assert ev.owner == ALICE
    assert ev.assets == 10**30           # beyond 64-bit
    assert ev.shares == 7
    assert (ev.block_number, ev.log_index) == (42, 3)
    assert not ev.synthetic


def test_decode_withdraw_reads_owner_from_third_indexed_topic():
    ev = decode_log(withdraw_log(BOB, 5, 4, block=9))
    assert isinstance(ev, WithdrawEvent)
    assert (ev.owner, ev.assets, ev.shares) == (BOB, 5, 4)


def test_decode_transfer_and_vault_update():
    t = decode_log(transfer_log(ALICE, BOB, 99, block=1))
    assert isinstance(t, TransferEvent)
    assert (t.sender, t.recipient, t.value) == (ALICE, BOB, 99)

    u = decode_log(vault_update_log(1000, 900, block=2))
    assert isinstance(u, VaultUpdateEvent)
    assert (u.total_assets, u.total_shares) == (1000, 900)


def test_legacy_deposit_made_is_a_deposit():
    ev = decode_log(deposit_made_log(ALICE, 50, 40, block=3))
    assert isinstance(ev, DepositEvent)
    assert (ev.owner, ev.assets, ev.shares) == (ALICE, 50, 40)


def test_unknown_signature_is_not_an_error():
    lg = EventLog(VAULT, (Topic0("0x" + "ee" * 32),), "0x", 5, "0xabc", 0)
    ev = decode_log(lg)
    assert isinstance(ev, UnknownEvent)
    assert ev.topic0 == "0x" + "ee" * 32

    assert isinstance(decode_log(EventLog(VAULT, (), "0x", 5, "0xabc", 0)), UnknownEvent)


def test_malformed_known_signature_raises_decode_error():
    short = EventLog(VAULT, (DEPOSIT_T0,), words(1), 5, "0xabc", 0)
    with pytest.raises(DecodeError):
        decode_log(short)
    # ERC-721 style Transfer: value indexed, no data
    nft = EventLog(VAULT, (TRANSFER_T0, "0x" + "0" * 64, "0x" + "0" * 64, "0x" + "0" * 63 + "1"), "0x", 5, "0xabc", 0)
    with pytest.raises(DecodeError):
        decode_log(nft)


def test_disabled_optional_topic_decodes_as_unknown():
    topics = EventTopicSet(vault_update=None)
    assert isinstance(decode_log(vault_update_log(1, 1, block=1), topics), UnknownEvent)
    assert len(topics.topic0s()) == len(DEFAULT_TOPICS.topic0s()) - 1


def test_label_topics():
    labels = label_topics([DEPOSIT_T0, Topic0("0x" + "ff" * 32)])
    assert labels[DEPOSIT_T0] == "Deposit(address,address,uint256,uint256)"
    assert labels[Topic0("0x" + "ff" * 32)] is None
