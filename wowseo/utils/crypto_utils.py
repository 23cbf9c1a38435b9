"""
Common cryptographic utility functions
"""

from typing import Union

from eth_utils import add_0x_prefix, remove_0x_prefix
from web3 import Web3


# Tool ids and event topics are 32-byte words.
HASH_HEX_LEN = 64


def keccak_text(text: str) -> str:
    """
    Calculates keccak256 of the UTF-8 bytes of a string.
    Equivalent to ethers.keccak256(ethers.toUtf8Bytes(text))
    and to Solidity keccak256(bytes(text)).

    :param text: The string to hash. Hashed verbatim: no trimming or case folding.
    :return: The resulting hash as a 0x-prefixed lowercase hex string.
    """
    return Web3.to_hex(Web3.keccak(text.encode("utf-8")))


def bytes_to_hex_str(byte_arr: bytes) -> str:
    """
    Convert a byte array to a hex string.

    :param byte_arr: The byte array to convert.
    :return: The resulting hex string.
    """
    # bytes() strips HexBytes, whose hex() prefix behaviour differs by version.
    return "0x" + bytes(byte_arr).hex()


def bytes_to_hex_str_auto(byte_arr: Union[bytes, str, None]) -> Union[str, None]:
    """
    Convert a byte array to a hex string
    with intelligent conversion of bytes and string representations.
    Some APIs may return byte array as bytes, HexBytes, or a string,
    depending on the nodes and paths they use.

    :param byte_arr: The byte array to convert.
    :return: The resulting hex string.
    """
    if byte_arr is None:
        return None
    if isinstance(byte_arr, bytes):
        hex_str = bytes(byte_arr).hex()
    else:
        hex_str = str(byte_arr)
    if hex_str.startswith("0x"):
        return hex_str
    return "0x" + hex_str


def hex_str_to_bytes(hex_str: str) -> bytes:
    """
    Convert a hex string to a byte array.

    :param hex_str: The hex string to convert.
    :return: The resulting byte array.
    """
    return bytes.fromhex(remove_0x_prefix(hex_str))


def normalize_hash(value: Union[bytes, str]) -> str:
    """
    Normalize a 32-byte hash given as bytes or a hex string
    to the canonical 0x-prefixed lowercase form.

    :param value: The hash value.
    :return: The canonical hex string.
    """
    if isinstance(value, bytes):
        hex_str = bytes(value).hex()
    else:
        hex_str = remove_0x_prefix(str(value)).lower()
    if len(hex_str) != HASH_HEX_LEN:
        raise ValueError(f"Expected a 32-byte hash, got {value!r}")
    # Validate the digits.
    int(hex_str, 16)
    return add_0x_prefix(hex_str)
