"""
Tests of tool identifiers and bundle pricing
"""

import unittest

from wowseo.core.pricing import (
    TOOL_IDS,
    TOOL_NAMES_BY_ID,
    ToolName,
    compute_price,
    derive_tool_id,
    resolve_tool_name,
    tally_tool_usage,
    tool_id_for,
)
from wowseo.utils.crypto_utils import hex_str_to_bytes, keccak_text
from wowseo.utils.error_utils import UnknownToolError, UnregisteredToolError


# Registry used by the dashboard deployment.
_PRICES = {
    ToolName.METADATA_ANALYSIS: 1_000_000,
    ToolName.CONTENT_AUDIT: 1_000_000,
    ToolName.KEYWORD_ANALYSIS: 1_000_000,
    ToolName.LINK_VERIFICATION: 1_000_000,
    ToolName.PERFORMANCE_ANALYSIS: 1_000_000,
    ToolName.BACKLINKS_ANALYSIS: 1_000_000,
    ToolName.SECURITY_AUDIT: 2_000_000,
    ToolName.WALLET_ANALYSIS: 2_000_000,
    ToolName.BLOCKCHAIN_ANALYSIS: 2_000_000,
    ToolName.AI_ASSISTANT_DASHBOARD: 3_000_000,
    ToolName.SOCIAL_WEB3_ANALYSIS: 2_000_000,
}
_REGISTRY = {TOOL_IDS[tool]: price for tool, price in _PRICES.items()}


class TestToolIds(unittest.TestCase):
    """Test tool id derivation and name resolution"""

    def test_derive_tool_id(self):
        tool_id = derive_tool_id("METADATA_ANALYSIS")
        self.assertEqual(tool_id, keccak_text("METADATA_ANALYSIS"))
        self.assertEqual(tool_id, derive_tool_id("METADATA_ANALYSIS"))
        self.assertEqual(tool_id, tool_id.lower())
        self.assertEqual(len(tool_id), 66)

    def test_derive_tool_id_case_sensitive(self):
        self.assertNotEqual(
            derive_tool_id("METADATA_ANALYSIS"), derive_tool_id("metadata_analysis")
        )

    def test_tool_ids_unique(self):
        self.assertEqual(len(TOOL_IDS), len(ToolName))
        self.assertEqual(len(set(TOOL_IDS.values())), len(ToolName))
        for tool, tool_id in TOOL_IDS.items():
            self.assertEqual(TOOL_NAMES_BY_ID[tool_id], tool)

    def test_resolve_aliases(self):
        self.assertEqual(resolve_tool_name("metadata"), ToolName.METADATA_ANALYSIS)
        self.assertEqual(resolve_tool_name("onchain"), ToolName.BLOCKCHAIN_ANALYSIS)
        self.assertEqual(resolve_tool_name("ai-assistant"), ToolName.AI_ASSISTANT_DASHBOARD)
        self.assertEqual(resolve_tool_name("security_audit"), ToolName.SECURITY_AUDIT)
        self.assertEqual(resolve_tool_name(ToolName.WALLET_ANALYSIS), ToolName.WALLET_ANALYSIS)
        self.assertEqual(tool_id_for("links"), TOOL_IDS[ToolName.LINK_VERIFICATION])

    def test_resolve_unknown_name(self):
        with self.assertRaises(UnknownToolError):
            resolve_tool_name("SEO_MAGIC")


class TestComputePrice(unittest.TestCase):
    """Test compute_price against the contract arithmetic"""

    def test_full_bundle_discount(self):
        quote = compute_price(list(_REGISTRY), _REGISTRY)
        self.assertEqual(quote.subtotal, 17_000_000)
        self.assertEqual(quote.final_price, 15_300_000)
        self.assertTrue(quote.is_full_bundle_discount)

    def test_partial_selection(self):
        selected = [
            TOOL_IDS[tool]
            for tool in ToolName
            if tool not in (ToolName.AI_ASSISTANT_DASHBOARD, ToolName.SOCIAL_WEB3_ANALYSIS,
                            ToolName.BLOCKCHAIN_ANALYSIS)
        ]
        quote = compute_price(selected, _REGISTRY)
        self.assertEqual(quote.subtotal, 10_000_000)
        self.assertEqual(quote.final_price, 10_000_000)
        self.assertFalse(quote.is_full_bundle_discount)

    def test_empty_selection(self):
        quote = compute_price([], _REGISTRY)
        self.assertEqual(quote.subtotal, 0)
        self.assertEqual(quote.final_price, 0)
        self.assertFalse(quote.is_full_bundle_discount)

    def test_unregistered_tool(self):
        with self.assertRaises(UnregisteredToolError):
            compute_price([TOOL_IDS[ToolName.METADATA_ANALYSIS], "0x" + "00" * 32], _REGISTRY)

    def test_duplicates_charged_twice(self):
        metadata_id = TOOL_IDS[ToolName.METADATA_ANALYSIS]
        quote = compute_price([metadata_id, metadata_id], _REGISTRY)
        self.assertEqual(quote.subtotal, 2_000_000)
        self.assertFalse(quote.is_full_bundle_discount)

    def test_full_bundle_with_duplicate(self):
        selected = list(_REGISTRY) + [TOOL_IDS[ToolName.METADATA_ANALYSIS]]
        quote = compute_price(selected, _REGISTRY)
        self.assertEqual(quote.subtotal, 18_000_000)
        self.assertTrue(quote.is_full_bundle_discount)
        self.assertEqual(quote.final_price, 16_200_000)

    def test_mixed_case_ids(self):
        selected = [tool_id.upper().replace("0X", "0x") for tool_id in _REGISTRY]
        quote = compute_price(selected, _REGISTRY)
        self.assertTrue(quote.is_full_bundle_discount)

    def test_discount_rounds_down(self):
        registry = {TOOL_IDS[ToolName.METADATA_ANALYSIS]: 7}
        quote = compute_price(list(registry), registry, discount_percent=10)
        self.assertEqual(quote.final_price, 6)

    def test_custom_discount(self):
        quote = compute_price(list(_REGISTRY), _REGISTRY, discount_percent=25)
        self.assertEqual(quote.final_price, 12_750_000)
        quote = compute_price(list(_REGISTRY), _REGISTRY, discount_percent=0)
        self.assertEqual(quote.final_price, 17_000_000)

    def test_three_tool_registry(self):
        """A=5M, B=5M, C=7M with a 10% bundle discount."""
        a, b, c = (derive_tool_id(name) for name in ("A", "B", "C"))
        registry = {a: 5_000_000, b: 5_000_000, c: 7_000_000}

        quote = compute_price([a, b, c], registry, discount_percent=10)
        self.assertEqual(quote.subtotal, 17_000_000)
        self.assertEqual(quote.final_price, 15_300_000)
        self.assertTrue(quote.is_full_bundle_discount)

        quote = compute_price([a, b], registry, discount_percent=10)
        self.assertEqual(quote.subtotal, 10_000_000)
        self.assertEqual(quote.final_price, 10_000_000)
        self.assertFalse(quote.is_full_bundle_discount)

    def test_malformed_tool_id(self):
        with self.assertRaises(ValueError):
            compute_price(["0x1234"], _REGISTRY)

    def test_bytes_tool_ids(self):
        selected = [hex_str_to_bytes(tool_id) for tool_id in _REGISTRY]
        quote = compute_price(selected, _REGISTRY)
        self.assertTrue(quote.is_full_bundle_discount)

    def test_invalid_discount(self):
        for discount in (-1, 101, True):
            with self.assertRaises(ValueError):
                compute_price(list(_REGISTRY), _REGISTRY, discount_percent=discount)


class TestTallyToolUsage(unittest.TestCase):
    def test_tally(self):
        counts = tally_tool_usage(["metadata", "METADATA_ANALYSIS", "wallet"])
        self.assertEqual(counts[ToolName.METADATA_ANALYSIS], 2)
        self.assertEqual(counts[ToolName.WALLET_ANALYSIS], 1)

    def test_tally_unknown_name(self):
        with self.assertRaises(UnknownToolError):
            tally_tool_usage(["metadata", "unknown_tool"])


if __name__ == "__main__":
    unittest.main()
