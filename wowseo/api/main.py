"""
Indexer HTTP surface: management, indexed data queries, and metrics.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from wowseo.api.dependencies import (
    create_services_from_env,
    get_database_service,
    get_indexer_service,
    get_monitoring,
    set_dependencies,
)
from wowseo.api.routers import indexed_data, indexers, metrics
from wowseo.core.database_service import DatabaseService
from wowseo.core.indexer_service import IndexerService
from wowseo.core.monitoring import IndexerMonitoring
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


def create_app(
    monitoring: Optional[IndexerMonitoring] = None,
    indexer_service: Optional[IndexerService] = None,
    database_service: Optional[DatabaseService] = None,
) -> FastAPI:
    """
    Create the API app.
    Without monitoring, every service is built from the environment at startup.

    :param monitoring: The monitoring object.
    :param indexer_service: The indexer service.
    :param database_service: The database service.
    :return: The app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if monitoring is None:
            set_dependencies(*create_services_from_env())
        else:
            set_dependencies(database_service, indexer_service, monitoring)
        _LOG.info("API startup completed")
        yield
        set_dependencies(None, None, None)
        _LOG.info("API shutting down")

    app = FastAPI(
        title="WowSeoWeb3 Indexer API",
        description="Indexer management, indexed chain data, and metrics",
        version="0.1.0",
        lifespan=lifespan,
    )
    # Before the indexers router, whose /{indexer_id} would match "metrics".
    app.include_router(metrics.router, prefix="/api/indexers/metrics", tags=["metrics"])
    app.include_router(indexers.router, prefix="/api/indexers", tags=["indexers"])
    app.include_router(indexed_data.router, prefix="/api/indexed-data", tags=["indexed-data"])

    # Usable without running the lifespan.
    if monitoring is not None:
        app.dependency_overrides[get_monitoring] = lambda: monitoring
    if indexer_service is not None:
        app.dependency_overrides[get_indexer_service] = lambda: indexer_service
    if database_service is not None:
        app.dependency_overrides[get_database_service] = lambda: database_service
    return app
