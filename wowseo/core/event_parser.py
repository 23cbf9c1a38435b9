"""
Event log decoding with per-contract ABIs.
"""

import logging
from typing import Dict, List, Optional, Tuple

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import event_abi_to_log_topic

from wowseo.core.types import ChainLog
from wowseo.utils.crypto_utils import (
    bytes_to_hex_str,
    bytes_to_hex_str_auto,
    hex_str_to_bytes,
    keccak_text,
)
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


UNKNOWN_EVENT_NAME = "Unknown"

# Event signatures commonly found on mainnet.
EVENT_SIGNATURES = {
    "ERC20_TRANSFER": "Transfer(address,address,uint256)",
    "ERC20_APPROVAL": "Approval(address,address,uint256)",
    "ERC721_APPROVAL_FOR_ALL": "ApprovalForAll(address,address,bool)",
    "UNISWAP_V2_PAIR_CREATED": "PairCreated(address,address,address,uint256)",
    "UNISWAP_V2_SWAP": "Swap(address,uint256,uint256,uint256,uint256,address)",
    "UNISWAP_V2_MINT": "Mint(address,uint256,uint256)",
    "UNISWAP_V2_BURN": "Burn(address,uint256,uint256,address)",
}

# Topic hash -> event name, used to name logs of contracts with no registered ABI.
KNOWN_TOPICS = {
    keccak_text(signature): signature.split("(")[0]
    for signature in EVENT_SIGNATURES.values()
}

# Types whose indexed values are stored as a hash in the topic.
_HASHED_TOPIC_TYPES = ("string", "bytes", "tuple")


def _is_hashed_topic_type(abi_type: str) -> bool:
    return abi_type in _HASHED_TOPIC_TYPES or abi_type.endswith("]")


def _to_json_value(value):
    """Convert a decoded ABI value to a JSON-safe value."""
    if isinstance(value, bytes):
        return bytes_to_hex_str(value)
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        # Decimal strings keep uint256 values exact for any JSON consumer.
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
        return value.lower()
    return value


class EventParser:
    """
    Decodes event logs using ABIs registered per contract address.
    Logs of unregistered contracts are kept undecoded.
    """

    def __init__(self):
        # address -> topic0 -> event ABI
        self._abi_map: Dict[str, Dict[str, dict]] = {}

    def register_abi(self, address: str, abi: List[dict]):
        """
        Register a contract ABI for an address.

        :param address: The contract address.
        :param abi: The contract ABI. Only event entries are used.
        """
        events = {}
        for entry in abi:
            if entry.get("type") != "event" or entry.get("anonymous"):
                continue
            topic = bytes_to_hex_str(event_abi_to_log_topic(entry))
            events[topic] = entry
        self._abi_map[address.lower()] = events
        _LOG.debug("Registered %s events for %s", len(events), address)

    def has_abi(self, address: str) -> bool:
        return address.lower() in self._abi_map

    def parse_event(self, log: ChainLog) -> Tuple[str, Optional[dict]]:
        """
        Decode a log.

        :param log: The log to decode.
        :return: The event name and the decoded arguments.
            Arguments are None when the log cannot be decoded.
        """
        topic0 = log.topics[0].lower() if log.topics else None
        events = self._abi_map.get(log.address.lower())
        if events is None or topic0 not in events:
            return KNOWN_TOPICS.get(topic0, UNKNOWN_EVENT_NAME), None

        event_abi = events[topic0]
        try:
            return event_abi["name"], self._decode(event_abi, log)
        except (DecodingError, ValueError, IndexError) as e:
            _LOG.warning(
                "Failed to decode %s log %s:%s: %s",
                event_abi["name"],
                log.tx_hash,
                log.log_index,
                e,
            )
            return event_abi["name"], None

    @staticmethod
    def _decode(event_abi: dict, log: ChainLog) -> dict:
        inputs = event_abi.get("inputs", [])
        indexed = [i for i in inputs if i.get("indexed")]
        non_indexed = [i for i in inputs if not i.get("indexed")]

        if len(log.topics) - 1 != len(indexed):
            raise ValueError(
                f"Expected {len(indexed)} indexed topics, got {len(log.topics) - 1}"
            )

        args = {}
        for abi_input, topic in zip(indexed, log.topics[1:]):
            if _is_hashed_topic_type(abi_input["type"]):
                args[abi_input["name"]] = bytes_to_hex_str_auto(topic)
            else:
                (value,) = decode([abi_input["type"]], hex_str_to_bytes(topic))
                args[abi_input["name"]] = _to_json_value(value)

        values = decode([i["type"] for i in non_indexed], hex_str_to_bytes(log.data))
        for abi_input, value in zip(non_indexed, values):
            args[abi_input["name"]] = _to_json_value(value)
        return args
