"""
Tests for the log / receipt classifier.
"""

from unittest.mock import patch

import pytest

from chains.evm_logs import (
    APPROVAL_TOPIC,
    SAFE_SEND_TOPIC,
    TRANSFER_SINGLE_TOPIC,
    TRANSFER_TOPIC,
    address_to_topic,
    decode_amount,
    parse_logs,
    process_block,
)
from core.models import TransactionKind

ALICE = "0x" + "a11ce".rjust(40, "0")
BOB = "0x" + "b0b".rjust(40, "0")
OPERATOR = "0x" + "0be7a70e".rjust(40, "0")
TOKEN = "0x" + "70cef00d".rjust(40, "0")
TX = "0x" + "ab" * 32

WATCHED = {ALICE: "Alice"}


def topic(address):
    return "0x" + address[2:].rjust(64, "0")


def word(value):
    return "0x" + format(value, "064x")


def make_log(signature, *indexed, data="0x", address=TOKEN, tx_hash=TX):
    return {
        "address": address,
        "topics": [signature] + [topic(a) for a in indexed],
        "data": data,
        "transactionHash": tx_hash,
    }


class TestParseLogs:

    def test_transfer_from_watched(self):
        log = make_log(TRANSFER_TOPIC, ALICE, BOB, data=word(1500))
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.TRANSFER
        assert tx.from_address == ALICE
        assert tx.to_address == BOB
        assert tx.amount == 1500
        assert tx.contract == TOKEN
        assert tx.involved_account == ALICE
        assert tx.hash == TX

    def test_transfer_to_watched_uses_topics_for_from_and_to(self):
        log = make_log(TRANSFER_TOPIC, BOB, ALICE, data=word(7))
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.TRANSFER
        assert tx.from_address == BOB
        assert tx.to_address == ALICE
        assert tx.involved_account == ALICE

    def test_transfer_between_two_watched_accounts_yields_one_per_topic(self):
        watched = {ALICE: "Alice", BOB: "Bob"}
        log = make_log(TRANSFER_TOPIC, ALICE, BOB, data=word(1))
        txs = parse_logs([log], watched)

        assert [t.involved_account for t in txs] == [ALICE, BOB]
        assert all(t.kind == TransactionKind.TRANSFER for t in txs)

    def test_transfer_single_1155(self):
        log = make_log(TRANSFER_SINGLE_TOPIC, OPERATOR, ALICE, BOB, data=word(1) + "00" * 32)
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.TRANSFER_1155
        assert tx.from_address == ALICE
        assert tx.to_address == BOB
        assert tx.amount == 0
        assert tx.contract == TOKEN

    def test_approval(self):
        log = make_log(APPROVAL_TOPIC, ALICE, BOB, data=word(2 ** 256 - 1))
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.APPROVAL
        assert tx.from_address == ALICE
        assert tx.to_address == BOB
        assert tx.amount == 2 ** 256 - 1

    def test_safe_send_is_native(self):
        safe = "0x" + "5afe".rjust(40, "0")
        log = make_log(SAFE_SEND_TOPIC, ALICE, data=word(10 ** 18), address=safe)
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.SEND
        assert tx.from_address == ALICE
        assert tx.to_address == safe
        assert tx.amount == 10 ** 18
        assert tx.contract is None

    def test_unknown_signature_is_other(self):
        log = make_log("0x" + "12" * 32, ALICE)
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.OTHER
        assert tx.involved_account == ALICE
        assert tx.from_address is None
        assert tx.to_address is None
        assert tx.amount is None

    def test_unwatched_log_is_ignored(self):
        log = make_log(TRANSFER_TOPIC, BOB, OPERATOR, data=word(1))
        assert parse_logs([log], WATCHED) == []

    def test_empty_addressbook(self):
        log = make_log(TRANSFER_TOPIC, ALICE, BOB, data=word(1))
        assert parse_logs([log], {}) == []

    def test_uppercase_topics_match(self):
        log = make_log(TRANSFER_TOPIC, ALICE, BOB, data=word(1))
        log["topics"] = [t.upper().replace("0X", "0x") for t in log["topics"]]
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.TRANSFER

    def test_malformed_data_gives_zero_and_batch_continues(self):
        bad = make_log(TRANSFER_TOPIC, ALICE, BOB, data="0xnothex")
        good = make_log(APPROVAL_TOPIC, ALICE, BOB, data=word(5), tx_hash="0x" + "cd" * 32)
        txs = parse_logs([bad, good], WATCHED)

        assert [t.amount for t in txs] == [0, 5]

    def test_known_signature_with_missing_topics_falls_back_to_other(self):
        log = make_log(TRANSFER_SINGLE_TOPIC, ALICE)
        [tx] = parse_logs([log], WATCHED)

        assert tx.kind == TransactionKind.OTHER


class TestDecodeAmount:

    @pytest.mark.parametrize("data", [None, "", "0x", "0x1234", "0x" + "zz" * 32])
    def test_unreadable(self, data):
        assert decode_amount(data) == 0

    def test_reads_first_word_only(self):
        assert decode_amount(word(42) + "ff" * 32) == 42


class TestProcessBlock:

    def receipt(self, sender, to, gas_used, logs=()):
        return {
            "transactionHash": TX,
            "from": sender,
            "to": to,
            "gasUsed": gas_used,
            "logs": list(logs),
        }

    def test_plain_transfer_from_watched_is_send(self):
        [tx] = process_block([self.receipt(ALICE, BOB, hex(21000))], WATCHED)

        assert tx.kind == TransactionKind.SEND
        assert tx.from_address == ALICE
        assert tx.to_address == BOB
        assert tx.involved_account == ALICE
        assert tx.amount is None
        assert tx.contract is None

    def test_contract_call_to_watched_is_other(self):
        [tx] = process_block([self.receipt(BOB, ALICE, hex(54000))], WATCHED)

        assert tx.kind == TransactionKind.OTHER
        assert tx.involved_account == ALICE

    def test_receipt_fallback_skipped_when_logs_matched(self):
        log = make_log(TRANSFER_TOPIC, ALICE, BOB, data=word(3))
        txs = process_block([self.receipt(ALICE, TOKEN, hex(60000), [log])], WATCHED)

        assert [t.kind for t in txs] == [TransactionKind.TRANSFER]

    def test_contract_creation_has_no_recipient(self):
        [tx] = process_block([self.receipt(ALICE, None, hex(900000))], WATCHED)

        assert tx.to_address is None
        assert tx.kind == TransactionKind.OTHER

    def test_unrelated_receipt(self):
        assert process_block([self.receipt(BOB, OPERATOR, hex(21000))], WATCHED) == []

    def test_watched_topics_are_built_once_per_block(self):
        watched = {ALICE: "Alice", BOB: "Bob", OPERATOR: "Operator"}
        receipts = [
            self.receipt(TOKEN, TOKEN, hex(60000), [make_log(TRANSFER_TOPIC, ALICE, TOKEN, data=word(1))]),
            self.receipt(TOKEN, TOKEN, hex(60000), [make_log(APPROVAL_TOPIC, BOB, TOKEN, data=word(2))]),
            self.receipt(TOKEN, TOKEN, hex(60000)),
            self.receipt(TOKEN, TOKEN, hex(60000)),
        ]

        with patch("chains.evm_logs.address_to_topic", wraps=address_to_topic) as pad:
            txs = process_block(receipts, watched)

        assert pad.call_count == len(watched)
        assert [t.kind for t in txs] == [TransactionKind.TRANSFER, TransactionKind.APPROVAL]

    def test_empty_addressbook(self):
        assert process_block([self.receipt(ALICE, BOB, hex(21000))], {}) == []
