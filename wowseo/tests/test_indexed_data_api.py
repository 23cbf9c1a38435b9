"""
Tests of the indexed data HTTP endpoint
"""

import unittest
from unittest.mock import Mock

from fastapi.testclient import TestClient

from wowseo.api.main import create_app
from wowseo.core.database_service import DatabaseService
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import IndexerMonitoring
from wowseo.core.types import DataType
from wowseo.tests.utils import (
    TEST_NETWORK,
    FakeChainClient,
    FakeClock,
    create_test_database_service,
    make_tx_hash,
)

_URL = "/api/indexed-data"


class TestIndexedDataApi(unittest.TestCase):
    def setUp(self):
        self.db = create_test_database_service()
        self.chain = FakeChainClient(head=105)
        monitoring = IndexerMonitoring(
            self.db, get_chain_client=lambda network: self.chain, clock=FakeClock()
        )
        service = IndexerService(self.db, chain_clients={TEST_NETWORK: self.chain})
        indexer = service.create_indexer(
            name="everything",
            network=TEST_NETWORK,
            start_block=101,
            data_types=[DataType.BLOCKS, DataType.TRANSACTIONS, DataType.EVENTS],
        )
        service.run_batch(indexer.id)
        self.client = TestClient(create_app(monitoring, service, self.db))

    def test_blocks_default_newest_first(self):
        response = self.client.get(_URL, params={"limit": 2, "page": 2})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["dataType"], "blocks")
        self.assertEqual([b["block_number"] for b in body["data"]], ["103", "102"])
        self.assertEqual(body["pagination"], {"total": 5, "page": 2, "limit": 2})

    def test_transactions_by_address(self):
        response = self.client.get(
            _URL,
            params={"dataType": "transactions", "address": "0x" + "BB" * 20, "limit": 100},
        )
        body = response.json()
        self.assertEqual(body["pagination"]["total"], 10)
        tx = [t for t in body["data"] if t["tx_hash"] == make_tx_hash(101, 0)][0]
        self.assertEqual(tx["value"], str(10**30 + 101))
        self.assertEqual(tx["gas_used"], "21000")

        response = self.client.get(
            _URL, params={"dataType": "transactions", "address": "0x" + "ee" * 20}
        )
        self.assertEqual(response.json()["pagination"]["total"], 0)

    def test_events_block_range(self):
        response = self.client.get(
            _URL,
            params={"dataType": "events", "fromBlock": 104, "toBlock": 105, "network": "eth"},
        )
        body = response.json()
        self.assertEqual(body["pagination"]["total"], 4)
        self.assertEqual({e["block_number"] for e in body["data"]}, {"104", "105"})
        self.assertEqual(body["data"][0]["log_index"], "0")

    def test_blocks_by_timestamp(self):
        # Block n has timestamp 1_700_000_000 + 12 * n.
        response = self.client.get(
            _URL,
            params={
                "fromTimestamp": 1_700_000_000 + 12 * 102,
                "toTimestamp": 1_700_000_000 + 12 * 103,
            },
        )
        self.assertEqual(
            [b["block_number"] for b in response.json()["data"]], ["103", "102"]
        )

    def test_invalid_requests(self):
        self.assertEqual(self.client.get(_URL, params={"dataType": "traces"}).status_code, 422)
        self.assertEqual(self.client.get(_URL, params={"page": 0}).status_code, 422)
        self.assertEqual(self.client.get(_URL, params={"limit": 1001}).status_code, 422)
        response = self.client.get(_URL, params={"fromBlock": 10, "toBlock": 5})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_internal_error(self):
        db = Mock(spec=DatabaseService)
        db.query_chain_data.side_effect = RuntimeError("database is locked")
        client = TestClient(create_app(Mock(spec=IndexerMonitoring), Mock(), db))

        response = client.get(_URL)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["details"], "database is locked")


if __name__ == "__main__":
    unittest.main()
