"""
FastAPI dependencies for the storage backend and query services.
"""
from fastapi import Depends, Request

from meterhub.services.source_summary import SourceSummaryAggregator
from meterhub.services.virtual_sources import VirtualSourceResolver
from meterhub.storage.base import PersistenceBackend


def get_backend(request: Request) -> PersistenceBackend:
    """Backend created by the application lifespan."""
    return request.app.state.backend


def get_resolver(backend: PersistenceBackend = Depends(get_backend)) -> VirtualSourceResolver:
    return VirtualSourceResolver(backend)


def get_summary_aggregator(
    backend: PersistenceBackend = Depends(get_backend),
    resolver: VirtualSourceResolver = Depends(get_resolver),
) -> SourceSummaryAggregator:
    return SourceSummaryAggregator(backend, resolver)
