"""
Tests of the metrics HTTP endpoints
"""

import unittest
from unittest.mock import Mock

from fastapi.testclient import TestClient

from wowseo.api.main import create_app
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import IndexerMonitoring
from wowseo.tests.utils import (
    TEST_NETWORK,
    FakeChainClient,
    FakeClock,
    create_test_database_service,
)

_URL = "/api/indexers/metrics"


class TestMetricsApi(unittest.TestCase):
    def setUp(self):
        self.db = create_test_database_service()
        self.chain = FakeChainClient(head=105)
        self.monitoring = IndexerMonitoring(
            self.db, get_chain_client=lambda network: self.chain, clock=FakeClock()
        )
        service = IndexerService(
            self.db,
            chain_clients={TEST_NETWORK: self.chain},
            metrics_recorder=self.monitoring,
        )
        self.indexer = service.create_indexer(
            name="blocks", network=TEST_NETWORK, start_block=101
        )
        service.run_batch(self.indexer.id)
        self.client = TestClient(create_app(self.monitoring))

    def test_system_metrics_default(self):
        response = self.client.get(_URL)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"]["total_indexers"], 1)
        self.assertEqual(body["data"]["total_blocks_stored"], 5)

    def test_indexer_metrics(self):
        response = self.client.get(_URL, params={"type": "indexer", "indexerId": self.indexer.id})
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["indexer_id"], self.indexer.id)
        self.assertEqual(data["last_processed_block"], 105)
        self.assertEqual(data["lag"], 0)

    def test_health(self):
        response = self.client.get(_URL, params={"type": "health"})
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["status"], "healthy")
        self.assertTrue(data["isHealthy"])

    def test_invalid_type(self):
        response = self.client.get(_URL, params={"type": "latency"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_indexer_id_required(self):
        response = self.client.get(_URL, params={"type": "indexer"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("indexerId", response.json()["error"])

    def test_unknown_indexer(self):
        response = self.client.get(_URL, params={"type": "indexer", "indexerId": "missing"})
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.json()["success"])

    def test_internal_error(self):
        monitoring = Mock(spec=IndexerMonitoring)
        monitoring.get_system_metrics.side_effect = RuntimeError("database is locked")
        client = TestClient(create_app(monitoring))

        response = client.get(_URL)
        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertEqual(body["error"], "Internal server error")
        self.assertEqual(body["details"], "database is locked")

    def test_clear_cache(self):
        self.client.get(_URL)
        self.assertEqual(len(self.monitoring.cache), 1)

        response = self.client.delete(_URL)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"success": True, "message": "Metrics cache cleared"}
        )
        self.assertEqual(len(self.monitoring.cache), 0)


if __name__ == "__main__":
    unittest.main()
