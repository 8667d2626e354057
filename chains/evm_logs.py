from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set

from core.models import InterestingTransaction, TransactionKind

# keccak256 event signatures (topics[0])
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TRANSFER_SINGLE_TOPIC = "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"  # ERC1155
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
SAFE_SEND_TOPIC = "0x3d0ce9bfc3ed7d6862dbb28b2dea94561fe714a1b4d019aa8af39730d1ad7c3d"

NATIVE_TRANSFER_GAS = 21000


def _lower(s: Optional[str]) -> str:
    return (s or "").lower()


def address_to_topic(address: str) -> str:
    """Left-pad a 20 byte address to the 32 byte topic form."""
    return "0x" + _lower(address)[2:].rjust(64, "0")


def topic_to_address(topic: str) -> str:
    """Low 20 bytes of a 32 byte topic."""
    return "0x" + _lower(topic)[-40:]


def decode_amount(data: Optional[str]) -> int:
    """First 32 byte word of log data as uint256; anything unreadable is 0."""
    d = _lower(data)
    if d.startswith("0x"):
        d = d[2:]
    if len(d) < 64:
        return 0
    try:
        return int(d[:64], 16)
    except ValueError:
        return 0


def _hex_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16)
    except ValueError:
        return None


def _known_event(log: Dict[str, Any], topics: List[str], tx_hash: str, involved: str) -> Optional[InterestingTransaction]:
    """Decode a log with a recognised signature, or None."""
    signature = topics[0]
    contract = _lower(log.get("address"))

    if signature == TRANSFER_TOPIC and len(topics) >= 3:
        return InterestingTransaction(
            hash=tx_hash,
            kind=TransactionKind.TRANSFER,
            involved_account=involved,
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            amount=decode_amount(log.get("data")),
            contract=contract,
        )

    if signature == TRANSFER_SINGLE_TOPIC and len(topics) >= 4:
        # topics[1] is the operator
        return InterestingTransaction(
            hash=tx_hash,
            kind=TransactionKind.TRANSFER_1155,
            involved_account=involved,
            from_address=topic_to_address(topics[2]),
            to_address=topic_to_address(topics[3]),
            amount=0,
            contract=contract,
        )

    if signature == APPROVAL_TOPIC and len(topics) >= 3:
        return InterestingTransaction(
            hash=tx_hash,
            kind=TransactionKind.APPROVAL,
            involved_account=involved,
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            amount=decode_amount(log.get("data")),
            contract=contract,
        )

    if signature == SAFE_SEND_TOPIC and len(topics) >= 2:
        return InterestingTransaction(
            hash=tx_hash,
            kind=TransactionKind.SEND,
            involved_account=involved,
            from_address=topic_to_address(topics[1]),
            to_address=contract,
            amount=decode_amount(log.get("data")),
        )

    return None


def parse_logs(logs: List[Dict[str, Any]], watched: Mapping[str, str]) -> List[InterestingTransaction]:
    """
    Every (log, topic) pair where the topic is a padded watched address yields
    exactly one candidate: the decoded event when the signature is known,
    otherwise an Other touching the watched address.

    `watched` is an addressbook snapshot (lowercase address -> label).
    """
    if not watched:
        return []
    return _match_logs(logs, watched_topic_set(watched))


def watched_topic_set(watched: Mapping[str, str]) -> Set[str]:
    return {address_to_topic(a) for a in watched}


def _match_logs(logs: List[Dict[str, Any]], watched_topics: Set[str]) -> List[InterestingTransaction]:
    out: List[InterestingTransaction] = []
    for log in logs:
        topics = [_lower(t) for t in (log.get("topics") or [])]
        if not topics:
            continue
        tx_hash = _lower(log.get("transactionHash"))

        for topic in topics:
            if topic not in watched_topics:
                continue
            involved = topic_to_address(topic)

            event = _known_event(log, topics, tx_hash, involved)
            if event is None:
                event = InterestingTransaction(
                    hash=tx_hash,
                    kind=TransactionKind.OTHER,
                    involved_account=involved,
                )
            out.append(event)

    return out


def _receipt_candidate(receipt: Dict[str, Any], watched: Mapping[str, str]) -> Optional[InterestingTransaction]:
    sender = _lower(receipt.get("from")) or None
    recipient = _lower(receipt.get("to")) or None  # None for contract creation

    if sender and sender in watched:
        involved = sender
    elif recipient and recipient in watched:
        involved = recipient
    else:
        return None

    if _hex_int(receipt.get("gasUsed")) == NATIVE_TRANSFER_GAS:
        kind = TransactionKind.SEND
    else:
        kind = TransactionKind.OTHER

    return InterestingTransaction(
        hash=_lower(receipt.get("transactionHash")),
        kind=kind,
        involved_account=involved,
        from_address=sender,
        to_address=recipient,
    )


def process_block(receipts: List[Dict[str, Any]], watched: Mapping[str, str]) -> List[InterestingTransaction]:
    """
    Classify all receipts of a block. A transaction whose logs matched nothing
    but whose top-level sender or recipient is watched still yields one
    candidate built from the receipt itself.
    """
    out: List[InterestingTransaction] = []
    if not watched:
        return out

    # padded once per block, not once per receipt
    watched_topics = watched_topic_set(watched)

    for receipt in receipts:
        found = _match_logs(receipt.get("logs") or [], watched_topics)
        if not found:
            candidate = _receipt_candidate(receipt, watched)
            if candidate is not None:
                found.append(candidate)
        out.extend(found)
    return out
