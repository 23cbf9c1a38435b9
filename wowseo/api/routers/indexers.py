# wowseo/api/routers/indexers.py

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from wowseo.api.dependencies import get_database_service, get_indexer_service
from wowseo.api.responses import error_response
from wowseo.core.database_service import DatabaseService
from wowseo.core.indexer_config import (
    DATA_TYPES_KEY,
    NETWORK_KEY,
    LogFilters,
    parse_data_types,
)
from wowseo.core.indexer_service import IndexerService
from wowseo.core.models import Indexer
from wowseo.core.types import IndexerStatus
from wowseo.utils.error_utils import ConfigurationError, IndexerNotFoundError
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


router = APIRouter()


class IndexerFilters(BaseModel):
    addresses: List[str] = []
    topics: List[str] = []


class CreateIndexerRequest(BaseModel):
    """Body of an indexer creation request"""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    network: str = Field(min_length=1)
    data_type: Union[str, List[str]] = Field(alias="dataType")
    description: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    start_block: Optional[int] = Field(default=None, alias="startBlock")
    batch_size: Optional[int] = Field(default=None, alias="batchSize")
    concurrency: Optional[int] = None
    filters: Optional[IndexerFilters] = None


def format_indexer(indexer: Indexer, configs: Dict[str, str]) -> Dict[str, Any]:
    """Convert an indexer and its config to the API response format"""
    return {
        "id": indexer.id,
        "name": indexer.name,
        "description": indexer.description,
        "status": indexer.status,
        "network": configs.get(NETWORK_KEY),
        "dataType": sorted(t.value for t in parse_data_types(configs.get(DATA_TYPES_KEY))),
        "lastRun": indexer.last_run,
        "createdAt": indexer.created_at,
    }


@router.get("")
def list_indexers(
    status: Optional[IndexerStatus] = Query(default=None),
    db: DatabaseService = Depends(get_database_service),
):
    """List indexers, optionally in one status"""
    try:
        indexers = db.list_indexers([status] if status is not None else None)
        data = [format_indexer(i, db.get_config_map(i.id)) for i in indexers]
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error listing indexers: %s", e)
        return error_response(500, "Internal server error", str(e))
    return {"success": True, "indexers": data, "count": len(data)}


@router.post("", status_code=201)
def create_indexer(
    request: CreateIndexerRequest,
    service: IndexerService = Depends(get_indexer_service),
):
    """Create an inactive indexer"""
    data_types = (
        request.data_type if isinstance(request.data_type, str) else ",".join(request.data_type)
    )
    filters = None
    if request.filters is not None:
        filters = LogFilters(
            addresses=[a.lower() for a in request.filters.addresses],
            topics=[t.lower() for t in request.filters.topics],
        )
    try:
        indexer = service.create_indexer(
            name=request.name,
            network=request.network,
            user_id=request.user_id,
            description=request.description,
            start_block=request.start_block,
            batch_size=request.batch_size,
            data_types=parse_data_types(data_types),
            filters=filters,
            concurrency=request.concurrency,
        )
        configs = service.db.get_config_map(indexer.id)
    except ConfigurationError as e:
        return error_response(400, str(e))
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error creating indexer %s: %s", request.name, e)
        return error_response(500, "Internal server error", str(e))
    return {"success": True, "indexer": format_indexer(indexer, configs)}


@router.delete("")
def delete_indexer(
    indexer_id: Optional[str] = Query(default=None, alias="id"),
    service: IndexerService = Depends(get_indexer_service),
):
    """Delete an indexer with its configuration and jobs"""
    if not indexer_id:
        return error_response(400, "id is required")
    try:
        service.delete_indexer(indexer_id)
    except IndexerNotFoundError as e:
        return error_response(404, str(e))
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error deleting indexer %s: %s", indexer_id, e)
        return error_response(500, "Internal server error", str(e))
    return {"success": True}


@router.get("/{indexer_id}")
def get_indexer_status(
    indexer_id: str,
    job_limit: int = Query(default=10, ge=1, le=100, alias="jobLimit"),
    service: IndexerService = Depends(get_indexer_service),
):
    """Get an indexer with its configuration and latest jobs"""
    try:
        data = service.get_indexer_status(indexer_id, job_limit)
    except IndexerNotFoundError as e:
        return error_response(404, str(e))
    return {"success": True, "data": data}


@router.post("/{indexer_id}/start")
def start_indexer(
    indexer_id: str,
    service: IndexerService = Depends(get_indexer_service),
):
    """Queue an indexer for the scheduler"""
    try:
        indexer = service.start_indexer(indexer_id)
    except IndexerNotFoundError as e:
        return error_response(404, str(e))
    return {"success": True, "status": indexer.status}


@router.post("/{indexer_id}/stop")
def stop_indexer(
    indexer_id: str,
    service: IndexerService = Depends(get_indexer_service),
):
    """Take an indexer off the schedule"""
    try:
        indexer = service.stop_indexer(indexer_id)
    except IndexerNotFoundError as e:
        return error_response(404, str(e))
    return {"success": True, "status": indexer.status}
