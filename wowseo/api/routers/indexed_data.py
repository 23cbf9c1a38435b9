# wowseo/api/routers/indexed_data.py

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import SQLModel

from wowseo.api.dependencies import get_database_service
from wowseo.api.responses import error_response
from wowseo.core.chain_client import normalize_network
from wowseo.core.database_service import DatabaseService
from wowseo.core.models import Block, Event, Transaction
from wowseo.core.types import DataType
from wowseo.utils.log import get_default_logger


_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


_MODELS = {
    DataType.BLOCKS: Block,
    DataType.TRANSACTIONS: Transaction,
    DataType.EVENTS: Event,
}

# uint256 columns, sent as decimal strings.
_UINT256_FIELDS = ("block_number", "value", "gas_price", "gas_used", "log_index")

router = APIRouter()


def format_row(row: SQLModel) -> Dict[str, Any]:
    """Convert a chain data row to the API response format"""
    data = row.model_dump()
    for name in _UINT256_FIELDS:
        if data.get(name) is not None:
            data[name] = str(data[name])
    return data


# pylint: disable-msg=too-many-arguments
@router.get("")
def get_indexed_data(
    data_type: DataType = Query(default=DataType.BLOCKS, alias="dataType"),
    network: Optional[str] = Query(default=None),
    address: Optional[str] = Query(default=None),
    from_block: Optional[int] = Query(default=None, ge=0, alias="fromBlock"),
    to_block: Optional[int] = Query(default=None, ge=0, alias="toBlock"),
    from_timestamp: Optional[int] = Query(default=None, ge=0, alias="fromTimestamp"),
    to_timestamp: Optional[int] = Query(default=None, ge=0, alias="toTimestamp"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=1000, description="Rows per page (max 1000)"),
    db: DatabaseService = Depends(get_database_service),
):
    """Page through indexed blocks, transactions, or events"""
    if from_block is not None and to_block is not None and from_block > to_block:
        return error_response(400, "fromBlock must not be greater than toBlock")

    try:
        rows, total = db.query_chain_data(
            _MODELS[data_type],
            network=normalize_network(network) if network else None,
            from_block=from_block,
            to_block=to_block,
            address=address,
            from_timestamp=from_timestamp,
            to_timestamp=to_timestamp,
            limit=limit,
            offset=(page - 1) * limit,
        )
    except Exception as e:  # pylint: disable=broad-except
        _LOG.error("Error querying indexed %s: %s", data_type.value, e)
        return error_response(500, "Internal server error", str(e))

    _LOG.debug("Indexed %s fetched: %s of %s", data_type.value, len(rows), total)
    return {
        "success": True,
        "dataType": data_type.value,
        "data": [format_row(row) for row in rows],
        "pagination": {"total": total, "page": page, "limit": limit},
    }
