"""
Access to the contract ABIs shipped with the package
"""

import json
import os
from typing import List


_ABI_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "abi")


def get_abi_json_file_path(file_name: str) -> str:
    """
    Get the path of a packaged ABI JSON file.

    :param file_name: The file name, e.g. "ERC20.json".
    :return: The absolute path.
    """
    return os.path.join(_ABI_DIR, file_name)


def load_abi(file_name: str) -> List[dict]:
    """
    Load the ABI from a packaged JSON file.

    :param file_name: The file name.
    :return: The ABI entries.
    """
    with open(get_abi_json_file_path(file_name), encoding="utf-8") as f:
        return json.load(f)["abi"]
