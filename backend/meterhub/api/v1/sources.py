"""
Source endpoints, including summaries.
"""
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status

from meterhub.api.deps import get_backend, get_summary_aggregator
from meterhub.core.logging import get_logger
from meterhub.models.schemas import Source, SourceSummary
from meterhub.services.source_summary import SourceSummaryAggregator
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)

router = APIRouter(prefix="/sources", tags=["Sources"])


@router.get("", response_model=List[Source])
async def list_sources(backend: PersistenceBackend = Depends(get_backend)):
    return await backend.get_sources()


@router.get("/{source_name}", response_model=Source)
async def get_source(source_name: str, backend: PersistenceBackend = Depends(get_backend)):
    return await backend.get_source(source_name)


@router.put("", response_model=Source, status_code=status.HTTP_201_CREATED)
async def put_source(
    source: Source,
    overwrite: bool = Query(False, description="Replace an existing source of the same name"),
    backend: PersistenceBackend = Depends(get_backend)
):
    """
    Store a source.

    The owner and every subsource must already exist.
    """
    await backend.put_source(source, overwrite=overwrite)
    logger.info(f"Stored source {source.name} (overwrite={overwrite})")
    return await backend.get_source(source.name)


@router.delete("/{source_name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(source_name: str, backend: PersistenceBackend = Depends(get_backend)):
    """
    Delete a source with its sensor data, properties and hierarchy edges.
    """
    await backend.delete_source(source_name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{source_name}/summary", response_model=SourceSummary)
async def get_source_summary(
    source_name: str,
    aggregator: SourceSummaryAggregator = Depends(get_summary_aggregator)
):
    return await aggregator.summarize(source_name)
