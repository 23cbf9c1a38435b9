# wowseo/api/routers/metrics.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from wowseo.api.dependencies import get_monitoring
from wowseo.api.responses import error_response
from wowseo.core.monitoring import IndexerMonitoring
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


METRICS_TYPES = ("system", "indexer", "health")

router = APIRouter()


@router.get("")
def get_metrics(
    metrics_type: str = Query(default="system", alias="type"),
    indexer_id: Optional[str] = Query(default=None, alias="indexerId"),
    monitoring: IndexerMonitoring = Depends(get_monitoring),
):
    """Get system, indexer, or health metrics"""
    if metrics_type not in METRICS_TYPES:
        return error_response(400, "Invalid metrics type. Use: system, indexer, health")
    if metrics_type == "indexer" and not indexer_id:
        return error_response(400, "indexerId is required for indexer metrics")

    try:
        if metrics_type == "indexer":
            metrics = monitoring.get_indexer_metrics(indexer_id)
            if metrics is None:
                return error_response(404, f"Indexer {indexer_id} not found")
            data = metrics.to_dict()
        elif metrics_type == "system":
            data = monitoring.get_system_metrics().to_dict()
        else:
            data = monitoring.get_health_status().to_dict()
    # Every failure becomes a 500 response.
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error fetching %s metrics: %s", metrics_type, e)
        return error_response(500, "Internal server error", str(e))
    return {"success": True, "data": data}


@router.delete("")
def clear_metrics_cache(monitoring: IndexerMonitoring = Depends(get_monitoring)):
    """Clear the metrics cache"""
    try:
        monitoring.clear_cache()
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error clearing metrics cache: %s", e)
        return error_response(500, "Error clearing metrics cache", str(e))
    return {"success": True, "message": "Metrics cache cleared"}
