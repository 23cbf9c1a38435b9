import unittest

from eth_abi import encode

from wowseo.core.event_parser import KNOWN_TOPICS, UNKNOWN_EVENT_NAME, EventParser
from wowseo.core.types import ChainLog
from wowseo.utils.abi_utils import load_abi
from wowseo.utils.crypto_utils import bytes_to_hex_str, keccak_text

_TOKEN = "0x" + "cc" * 20
_FROM = "0x" + "aa" * 20
_TO = "0x" + "bb" * 20
_TRANSFER_TOPIC = keccak_text("Transfer(address,address,uint256)")


def _address_topic(address: str) -> str:
    return "0x" + "00" * 12 + address[2:]


def _transfer_log(value: int, address: str = _TOKEN, topics=None) -> ChainLog:
    return ChainLog(
        block_number=1,
        tx_hash="0x" + "01" * 32,
        log_index=0,
        address=address,
        topics=topics
        if topics is not None
        else [_TRANSFER_TOPIC, _address_topic(_FROM), _address_topic(_TO)],
        data=bytes_to_hex_str(encode(["uint256"], [value])),
    )


class TestEventParser(unittest.TestCase):
    def setUp(self):
        self.parser = EventParser()
        self.parser.register_abi(_TOKEN.upper().replace("0X", "0x"), load_abi("ERC20.json"))

    def test_decode_transfer(self):
        name, args = self.parser.parse_event(_transfer_log(2**200))
        self.assertEqual(name, "Transfer")
        self.assertEqual(args, {"from": _FROM, "to": _TO, "value": str(2**200)})

    def test_has_abi(self):
        self.assertTrue(self.parser.has_abi(_TOKEN))
        self.assertFalse(self.parser.has_abi(_FROM))

    def test_known_topic_without_abi(self):
        name, args = self.parser.parse_event(_transfer_log(1, address=_FROM))
        self.assertEqual(name, "Transfer")
        self.assertIsNone(args)
        self.assertEqual(KNOWN_TOPICS[_TRANSFER_TOPIC], "Transfer")

    def test_unknown_topic(self):
        log = _transfer_log(1, topics=["0x" + "dd" * 32])
        self.assertEqual(self.parser.parse_event(log), (UNKNOWN_EVENT_NAME, None))

    def test_log_without_topics(self):
        log = _transfer_log(1, topics=[])
        self.assertEqual(self.parser.parse_event(log), (UNKNOWN_EVENT_NAME, None))

    def test_malformed_log(self):
        """A log that does not match its ABI keeps its name and no arguments."""
        log = _transfer_log(1, topics=[_TRANSFER_TOPIC, _address_topic(_FROM)])
        self.assertEqual(self.parser.parse_event(log), ("Transfer", None))


if __name__ == "__main__":
    unittest.main()
