"""
Tests of the indexer management HTTP endpoints
"""

import unittest

from fastapi.testclient import TestClient

from wowseo.api.main import create_app
from wowseo.core.indexer_config import FILTERS_KEY, LogFilters
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import IndexerMonitoring
from wowseo.core.types import IndexerStatus
from wowseo.tests.utils import (
    TEST_NETWORK,
    FakeChainClient,
    FakeClock,
    create_test_database_service,
)

_URL = "/api/indexers"


class TestIndexersApi(unittest.TestCase):
    def setUp(self):
        self.db = create_test_database_service()
        self.chain = FakeChainClient(head=105)
        self.monitoring = IndexerMonitoring(
            self.db, get_chain_client=lambda network: self.chain, clock=FakeClock()
        )
        self.service = IndexerService(
            self.db,
            chain_clients={TEST_NETWORK: self.chain},
            metrics_recorder=self.monitoring,
        )
        self.client = TestClient(create_app(self.monitoring, self.service, self.db))

    def _create(self, **overrides):
        body = {
            "name": "USDC transfers",
            "network": "ethereum",
            "dataType": ["events", "blocks"],
            "startBlock": 101,
        }
        body.update(overrides)
        return self.client.post(_URL, json=body)

    def test_create_and_list(self):
        response = self._create(
            description="Transfers of one token",
            filters={"addresses": ["0x" + "CC" * 20], "topics": []},
        )
        self.assertEqual(response.status_code, 201)
        indexer = response.json()["indexer"]
        self.assertEqual(indexer["name"], "USDC transfers")
        self.assertEqual(indexer["network"], "mainnet")
        self.assertEqual(indexer["dataType"], ["blocks", "events"])
        self.assertEqual(indexer["status"], IndexerStatus.INACTIVE.value)
        filters = LogFilters.from_json(self.db.get_config_map(indexer["id"])[FILTERS_KEY])
        self.assertEqual(filters.addresses, ["0x" + "cc" * 20])

        response = self.client.get(_URL)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["indexers"][0]["id"], indexer["id"])

    def test_create_single_data_type(self):
        response = self._create(dataType="transactions")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["indexer"]["dataType"], ["transactions"])

    def test_create_invalid_settings(self):
        response = self._create(dataType=["blocks", "traces"])
        self.assertEqual(response.status_code, 400)
        self.assertIn("traces", response.json()["error"])

        response = self._create(batchSize=0)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.list_indexers(), [])

    def test_create_missing_fields(self):
        response = self.client.post(_URL, json={"name": "no network", "dataType": "blocks"})
        self.assertEqual(response.status_code, 422)

    def test_list_by_status(self):
        first = self._create().json()["indexer"]
        self._create(name="second")
        self.client.post(f"{_URL}/{first['id']}/start")

        body = self.client.get(_URL, params={"status": "pending"}).json()
        self.assertEqual([i["id"] for i in body["indexers"]], [first["id"]])

    def test_start_stop(self):
        indexer_id = self._create().json()["indexer"]["id"]
        response = self.client.post(f"{_URL}/{indexer_id}/start")
        self.assertEqual(response.json(), {"success": True, "status": "pending"})
        response = self.client.post(f"{_URL}/{indexer_id}/stop")
        self.assertEqual(response.json(), {"success": True, "status": "inactive"})
        self.assertEqual(self.client.post(f"{_URL}/missing/start").status_code, 404)

    def test_indexer_status(self):
        indexer_id = self._create().json()["indexer"]["id"]
        self.service.run_batch(indexer_id)

        response = self.client.get(f"{_URL}/{indexer_id}")
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["indexer"]["id"], indexer_id)
        self.assertEqual(data["config"]["lastProcessedBlock"], "105")
        self.assertEqual(len(data["jobs"]), 1)

        self.assertEqual(self.client.get(f"{_URL}/missing").status_code, 404)

    def test_metrics_route_not_shadowed(self):
        response = self.client.get(f"{_URL}/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertIn("total_indexers", response.json()["data"])

    def test_delete(self):
        indexer_id = self._create().json()["indexer"]["id"]

        self.assertEqual(self.client.delete(_URL).status_code, 400)
        self.assertEqual(self.client.delete(_URL, params={"id": "missing"}).status_code, 404)

        response = self.client.delete(_URL, params={"id": indexer_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        self.assertIsNone(self.db.get_indexer(indexer_id))


if __name__ == "__main__":
    unittest.main()
