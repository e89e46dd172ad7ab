"""Dataset endpoints."""

from fastapi import APIRouter, Depends, status

from chunkhub.api.deps import get_dataset_service
from chunkhub.chunks.datasets import DatasetService
from chunkhub.chunks.schemas import Dataset, DatasetCreate

router = APIRouter(prefix="/api/datasets", tags=["datasets"])


@router.post("", response_model=Dataset, status_code=status.HTTP_201_CREATED)
async def create_dataset(
    data: DatasetCreate,
    service: DatasetService = Depends(get_dataset_service),
) -> Dataset:
    """Create a dataset.

    ``configuration`` may override the duplicate threshold, embedding model
    and size, and ranking parameters for this dataset only.
    """
    return await service.create(data)


@router.get("/{dataset_id}", response_model=Dataset)
async def get_dataset(
    dataset_id: str,
    service: DatasetService = Depends(get_dataset_service),
) -> Dataset:
    """Get a dataset by id."""
    return await service.get(dataset_id)
