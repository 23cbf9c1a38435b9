"""
Dependencies of the HTTP surface, set during app startup.
"""

import os
from typing import Optional, Tuple, Union

from fastapi import HTTPException

from wowseo.core.chain_client import Web3HTTPChainClient
from wowseo.core.database_service import DatabaseService
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import DEFAULT_MAX_ACCEPTABLE_LAG, IndexerMonitoring
from wowseo.utils.error_utils import get_int_setting

_database_service: Optional[DatabaseService] = None
_indexer_service: Optional[IndexerService] = None
_monitoring: Optional[IndexerMonitoring] = None


def set_dependencies(
    database_service: Optional[DatabaseService],
    indexer_service: Optional[IndexerService],
    monitoring: Optional[IndexerMonitoring],
):
    """Called during app startup to set the shared service objects."""
    global _database_service, _indexer_service, _monitoring  # pylint: disable=global-statement
    _database_service = database_service
    _indexer_service = indexer_service
    _monitoring = monitoring


def get_database_service() -> DatabaseService:
    """Dependency to get the database service."""
    if _database_service is None:
        raise HTTPException(status_code=500, detail="Database service not initialized")
    return _database_service


def get_indexer_service() -> IndexerService:
    """Dependency to get the indexer service."""
    if _indexer_service is None:
        raise HTTPException(status_code=500, detail="Indexer service not initialized")
    return _indexer_service


def get_monitoring() -> IndexerMonitoring:
    """Dependency to get the monitoring object."""
    if _monitoring is None:
        raise HTTPException(status_code=500, detail="Monitoring not initialized")
    return _monitoring


def create_services_from_env(
    dotenv_path: Union[str, None] = None
) -> Tuple[DatabaseService, IndexerService, IndexerMonitoring]:
    """
    Build the services from WOWSEO_DATABASE_URL, the RPC settings,
    and MAX_ACCEPTABLE_LAG. Chain clients are created on first use
    and shared by the indexer service and monitoring.

    :param dotenv_path: Optional .env file.
    :return: The database service, indexer service and monitoring object.
    """
    database_service = DatabaseService.create_instance_from_env(dotenv_path)
    monitoring = IndexerMonitoring(
        database_service,
        max_acceptable_lag=get_int_setting(
            "MAX_ACCEPTABLE_LAG",
            os.getenv("MAX_ACCEPTABLE_LAG"),
            DEFAULT_MAX_ACCEPTABLE_LAG,
        ),
    )
    indexer_service = IndexerService(
        database_service,
        chain_client_factory=Web3HTTPChainClient.create_instance_from_env,
        metrics_recorder=monitoring,
    )
    monitoring.get_chain_client = indexer_service.get_chain_client
    return database_service, indexer_service, monitoring
