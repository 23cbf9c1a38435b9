"""
Tool identifiers and bundle pricing.
Prices follow the DashboardToolsContract integer arithmetic exactly.
"""

from collections import Counter
from enum import Enum
from typing import Dict, Iterable, Mapping, Union

from wowseo.core.types import PriceQuote
from wowseo.utils.crypto_utils import keccak_text, normalize_hash
from wowseo.utils.error_utils import UnknownToolError, UnregisteredToolError


# Discount the contract applies when every registered tool is selected.
DEFAULT_DISCOUNT_PERCENT = 10


class ToolName(str, Enum):
    """The closed set of dashboard tools sold through the contract."""

    METADATA_ANALYSIS = "METADATA_ANALYSIS"
    CONTENT_AUDIT = "CONTENT_AUDIT"
    KEYWORD_ANALYSIS = "KEYWORD_ANALYSIS"
    LINK_VERIFICATION = "LINK_VERIFICATION"
    PERFORMANCE_ANALYSIS = "PERFORMANCE_ANALYSIS"
    BACKLINKS_ANALYSIS = "BACKLINKS_ANALYSIS"
    SECURITY_AUDIT = "SECURITY_AUDIT"
    WALLET_ANALYSIS = "WALLET_ANALYSIS"
    BLOCKCHAIN_ANALYSIS = "BLOCKCHAIN_ANALYSIS"
    AI_ASSISTANT_DASHBOARD = "AI_ASSISTANT_DASHBOARD"
    SOCIAL_WEB3_ANALYSIS = "SOCIAL_WEB3_ANALYSIS"


# Dashboard route names.
TOOL_ALIASES: Dict[str, ToolName] = {
    "metadata": ToolName.METADATA_ANALYSIS,
    "content": ToolName.CONTENT_AUDIT,
    "keywords": ToolName.KEYWORD_ANALYSIS,
    "links": ToolName.LINK_VERIFICATION,
    "performance": ToolName.PERFORMANCE_ANALYSIS,
    "backlinks": ToolName.BACKLINKS_ANALYSIS,
    "security": ToolName.SECURITY_AUDIT,
    "wallet": ToolName.WALLET_ANALYSIS,
    "onchain": ToolName.BLOCKCHAIN_ANALYSIS,
    "social": ToolName.SOCIAL_WEB3_ANALYSIS,
    "ai-assistant": ToolName.AI_ASSISTANT_DASHBOARD,
}


def derive_tool_id(name: str) -> str:
    """
    Derive the on-chain identifier of a tool.
    The name is hashed verbatim, so "metadata_analysis" and
    "METADATA_ANALYSIS" yield different ids.

    :param name: The canonical tool name.
    :return: keccak256 of the UTF-8 name as a 0x-prefixed lowercase hex string.
    """
    return keccak_text(name)


TOOL_IDS: Dict[ToolName, str] = {tool: derive_tool_id(tool.value) for tool in ToolName}
TOOL_NAMES_BY_ID: Dict[str, ToolName] = {tool_id: tool for tool, tool_id in TOOL_IDS.items()}


def resolve_tool_name(name_or_alias: Union[str, ToolName]) -> ToolName:
    """
    Resolve a canonical name or dashboard alias to a tool.

    :param name_or_alias: A ToolName, its value, or an alias such as "metadata".
    :return: The tool.
    """
    if isinstance(name_or_alias, ToolName):
        return name_or_alias
    key = str(name_or_alias).strip()
    if key.lower() in TOOL_ALIASES:
        return TOOL_ALIASES[key.lower()]
    try:
        return ToolName(key.upper())
    except ValueError as e:
        raise UnknownToolError(str(name_or_alias)) from e


def tool_id_for(name_or_alias: Union[str, ToolName]) -> str:
    """
    Get the on-chain identifier for a tool name or alias.

    :param name_or_alias: The tool name or alias.
    :return: The tool id.
    """
    return TOOL_IDS[resolve_tool_name(name_or_alias)]


def compute_price(
    selected_tool_ids: Iterable[str],
    registry: Mapping[str, int],
    discount_percent: int = DEFAULT_DISCOUNT_PERCENT,
) -> PriceQuote:
    """
    Compute the price of a tool selection.

    :param selected_tool_ids: The selected tool ids. Duplicates are charged twice.
    :param registry: Registered tool id -> price in the smallest token unit.
    :param discount_percent: Percentage taken off when the selection covers
        exactly the full set of registered tools.
    :return: The quote. Raises UnregisteredToolError for an unregistered id
        and ValueError for an id that is not a 32-byte hash.
    """
    if isinstance(discount_percent, bool) or not 0 <= discount_percent <= 100:
        raise ValueError(f"discount_percent must be in [0, 100], got {discount_percent}")

    prices = {normalize_hash(tool_id): int(price) for tool_id, price in registry.items()}
    selected = [normalize_hash(tool_id) for tool_id in selected_tool_ids]
    if not selected:
        return PriceQuote(subtotal=0, final_price=0, is_full_bundle_discount=False)

    subtotal = 0
    for tool_id in selected:
        if tool_id not in prices:
            raise UnregisteredToolError(tool_id)
        subtotal += prices[tool_id]

    is_full_bundle = set(selected) == set(prices)
    if is_full_bundle:
        final_price = subtotal * (100 - discount_percent) // 100
    else:
        final_price = subtotal
    return PriceQuote(
        subtotal=subtotal,
        final_price=final_price,
        is_full_bundle_discount=is_full_bundle,
    )


def tally_tool_usage(names: Iterable[Union[str, ToolName]]) -> Counter:
    """
    Count tool usages by tool.
    Names are validated as they are counted.

    :param names: Tool names or aliases.
    :return: A Counter keyed by ToolName.
    """
    return Counter(resolve_tool_name(name) for name in names)
