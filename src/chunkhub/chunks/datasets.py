"""Dataset registry and per-request configuration resolution."""

import logging
import uuid

from chunkhub.chunks.schemas import Dataset, DatasetCreate
from chunkhub.concurrency import WorkerPool
from chunkhub.config import (
    Config,
    ConfigError,
    DatasetConfig,
    resolve_dataset_config,
    validate_overrides,
)
from chunkhub.errors import NotFoundFault, ValidationFault
from chunkhub.interfaces import MetadataStore

logger = logging.getLogger(__name__)


class DatasetService:
    """Creates datasets and resolves their configuration for a request."""

    def __init__(self, store: MetadataStore, settings: Config, pool: WorkerPool) -> None:
        self._store = store
        self._settings = settings
        self._pool = pool

    async def create(self, request: DatasetCreate) -> Dataset:
        try:
            configuration = validate_overrides(request.configuration)
        except ConfigError as e:
            raise ValidationFault(str(e)) from e

        dataset = Dataset(
            id=str(uuid.uuid4()),
            name=request.name,
            configuration=configuration,
            chunk_quota=request.chunk_quota,
        )
        await self._pool.run(self._store.create_dataset, dataset)
        logger.info(f"Created dataset {dataset.id} ({dataset.name})")
        return dataset

    async def get(self, dataset_id: str) -> Dataset:
        dataset = await self._pool.run(self._store.get_dataset, dataset_id)
        if dataset is None:
            raise NotFoundFault(f"Dataset not found: {dataset_id}")
        return dataset

    async def config_for(self, dataset_id: str) -> DatasetConfig:
        """Resolve the configuration a request against this dataset runs with."""
        dataset = await self.get(dataset_id)
        return resolve_dataset_config(
            self._settings,
            dataset.id,
            overrides=dataset.configuration,
            chunk_quota=dataset.chunk_quota,
        )
