"""
Indexer settings stored as key/value config rows.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional

from wowseo.core.database_service import LAST_PROCESSED_BLOCK_KEY
from wowseo.core.types import DataType
from wowseo.utils.error_utils import ConfigurationError, get_int_setting


# Config keys.
NETWORK_KEY = "network"
START_BLOCK_KEY = "startBlock"
BATCH_SIZE_KEY = "batchSize"
CONCURRENCY_KEY = "concurrency"
DATA_TYPES_KEY = "dataTypes"
FILTERS_KEY = "filters"

DEFAULT_BATCH_SIZE = 10
DEFAULT_CONCURRENCY = 1
DEFAULT_DATA_TYPES = frozenset([DataType.BLOCKS])


def parse_data_types(value: Optional[str]) -> FrozenSet[DataType]:
    """
    Parse a comma separated list of data types.

    :param value: E.g. "blocks,transactions".
    :return: The data types. Blocks only when unset.
    """
    if value is None or value.strip() == "":
        return DEFAULT_DATA_TYPES
    result = set()
    for name in value.split(","):
        name = name.strip().lower()
        if not name:
            continue
        try:
            result.add(DataType(name))
        except ValueError as e:
            raise ConfigurationError(f"Unknown data type '{name}'") from e
    return frozenset(result)


def format_data_types(data_types) -> str:
    return ",".join(sorted(DataType(t).value for t in data_types))


@dataclass(frozen=True)
class LogFilters:
    """
    Log filters: emitting addresses and accepted event signature topics.
    Empty lists match everything.
    """

    addresses: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)

    @staticmethod
    def from_json(value: Optional[str]) -> "LogFilters":
        if value is None or value.strip() == "":
            return LogFilters()
        try:
            raw = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid filters JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError("filters must be a JSON object")
        addresses = raw.get("addresses") or []
        topics = raw.get("topics") or []
        if not isinstance(addresses, list) or not isinstance(topics, list):
            raise ConfigurationError("filters.addresses and filters.topics must be lists")
        return LogFilters(
            addresses=[str(a).lower() for a in addresses],
            topics=[str(t).lower() for t in topics],
        )

    def to_json(self) -> str:
        return json.dumps({"addresses": self.addresses, "topics": self.topics})


@dataclass(frozen=True)
class IndexerSettings:
    """
    Typed view of an indexer's config rows.
    """

    network: str
    start_block: Optional[int]
    batch_size: int
    concurrency: int
    last_processed_block: Optional[int]
    data_types: FrozenSet[DataType]
    filters: LogFilters

    @staticmethod
    def from_config_map(configs: Mapping[str, str]) -> "IndexerSettings":
        """
        Parse and validate config rows.
        Missing or invalid required values raise ConfigurationError.

        :param configs: Config key -> value.
        :return: The settings.
        """
        network = configs.get(NETWORK_KEY)
        if not network:
            raise ConfigurationError(f"Missing required setting {NETWORK_KEY}")

        last_processed = configs.get(LAST_PROCESSED_BLOCK_KEY)
        last_processed_block = (
            get_int_setting(LAST_PROCESSED_BLOCK_KEY, last_processed)
            if last_processed not in (None, "")
            else None
        )
        start = configs.get(START_BLOCK_KEY)
        start_block = (
            get_int_setting(START_BLOCK_KEY, start) if start not in (None, "") else None
        )
        if last_processed_block is None and start_block is None:
            raise ConfigurationError(
                f"Missing required setting {START_BLOCK_KEY} for an indexer with no cursor"
            )

        batch_size = get_int_setting(
            BATCH_SIZE_KEY, configs.get(BATCH_SIZE_KEY), DEFAULT_BATCH_SIZE
        )
        if batch_size <= 0:
            raise ConfigurationError(f"{BATCH_SIZE_KEY} must be positive, got {batch_size}")
        concurrency = get_int_setting(
            CONCURRENCY_KEY, configs.get(CONCURRENCY_KEY), DEFAULT_CONCURRENCY
        )
        if concurrency <= 0:
            raise ConfigurationError(
                f"{CONCURRENCY_KEY} must be positive, got {concurrency}"
            )
        if start_block is not None and start_block < 0:
            raise ConfigurationError(f"{START_BLOCK_KEY} must not be negative")

        return IndexerSettings(
            network=network,
            start_block=start_block,
            batch_size=batch_size,
            concurrency=concurrency,
            last_processed_block=last_processed_block,
            data_types=parse_data_types(configs.get(DATA_TYPES_KEY)),
            filters=LogFilters.from_json(configs.get(FILTERS_KEY)),
        )

    @property
    def next_block(self) -> int:
        """The first block of the next batch."""
        if self.last_processed_block is None:
            return self.start_block
        return self.last_processed_block + 1


def get_default_settings_from_env() -> Dict[str, int]:
    """
    Indexer defaults from the environment:
    START_BLOCK, BATCH_SIZE and CONCURRENCY.

    :return: Config key -> default value.
    """
    return {
        START_BLOCK_KEY: get_int_setting("START_BLOCK", os.getenv("START_BLOCK"), 0),
        BATCH_SIZE_KEY: get_int_setting(
            "BATCH_SIZE", os.getenv("BATCH_SIZE"), DEFAULT_BATCH_SIZE
        ),
        CONCURRENCY_KEY: get_int_setting(
            "CONCURRENCY", os.getenv("CONCURRENCY"), DEFAULT_CONCURRENCY
        ),
    }
