"""
Decoding of raw ERC-20 Transfer logs.

Log fields come back as HexBytes from web3 providers but as hex strings
from some nodes and from JSON fixtures, so every field is normalized first.
"""

import logging
from collections.abc import Mapping
from typing import Any

from hexbytes import HexBytes
from web3 import Web3

from ..models import TransferEvent

logger = logging.getLogger(__name__)

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_TOPIC = HexBytes(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE))


def to_bytes_safe(value: HexBytes | bytes | str) -> bytes:
    """
    Convert HexBytes, bytes, or a hex string to bytes.

    :param value: The value to convert
    :return: Raw bytes
    """
    if isinstance(value, (HexBytes, bytes)):
        return bytes(value)
    return Web3.to_bytes(hexstr=value)


def parse_topic_as_address(topic: Any) -> str:
    """Extract the checksummed address from a 32-byte indexed topic."""
    raw = to_bytes_safe(topic)
    if len(raw) != 32:
        raise ValueError(f"Address topic must be 32 bytes, got {len(raw)}")
    return Web3.to_checksum_address(raw[-20:])


def _to_int(value: Any) -> int:
    """Quantity field as int; hex strings like ``'0x7'`` come from raw JSON-RPC logs."""
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith('0x') else int(value)
    return int(value)


def _hash_to_hex(value: Any) -> str:
    if isinstance(value, bytes):
        return '0x' + bytes(value).hex()
    text = str(value)
    return text if text.startswith('0x') else '0x' + text


def decode_transfer_log(log: Mapping[str, Any]) -> TransferEvent | None:
    """
    Decode one raw log entry into a TransferEvent.

    Returns None for logs that are not standard ERC-20 transfers
    (wrong signature, missing indexed addresses, short data).
    """
    topics = list(log.get('topics') or [])
    if len(topics) != 3:
        logger.warning(
            f"Skipping log with {len(topics)} topics "
            f"(tx {_hash_to_hex(log.get('transactionHash', b''))})"
        )
        return None

    if HexBytes(to_bytes_safe(topics[0])) != TRANSFER_TOPIC:
        logger.debug("Skipping log with non-Transfer signature")
        return None

    data = to_bytes_safe(log.get('data') or b'')
    if len(data) < 32:
        logger.warning(f"Skipping Transfer log with {len(data)} bytes of data")
        return None

    try:
        from_address = parse_topic_as_address(topics[1])
        to_address = parse_topic_as_address(topics[2])
    except ValueError as e:
        logger.warning(f"Skipping Transfer log with malformed address topic: {e}")
        return None

    try:
        block_number = _to_int(log.get('blockNumber', 0))
        log_index = _to_int(log.get('logIndex', 0))
    except (TypeError, ValueError) as e:
        logger.warning(f"Skipping Transfer log with malformed position: {e}")
        return None

    return TransferEvent(
        transaction_hash=_hash_to_hex(log.get('transactionHash', b'')),
        block_number=block_number,
        log_index=log_index,
        from_address=from_address,
        to_address=to_address,
        token_value=int.from_bytes(data[:32], byteorder='big'),
    )


def encode_address_topic(address: str) -> HexBytes:
    """Left-pad an address into a 32-byte topic, as nodes emit it."""
    return HexBytes(b'\x00' * 12 + Web3.to_bytes(hexstr=Web3.to_checksum_address(address)))
