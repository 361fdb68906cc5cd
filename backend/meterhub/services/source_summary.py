"""
Source summaries: how much data a source has and what span it covers.
"""
from typing import Optional

from meterhub.core.config import settings
from meterhub.models.schemas import SourceSummary
from meterhub.services.virtual_sources import VirtualSourceResolver, gather_leaves
from meterhub.storage.base import PersistenceBackend


class SourceSummaryAggregator:
    """Aggregates row counts and timestamp spans over a source's leaves."""

    def __init__(self, backend: PersistenceBackend, resolver: Optional[VirtualSourceResolver] = None):
        self.backend = backend
        self.resolver = resolver or VirtualSourceResolver(backend)

    @staticmethod
    def href_for(source_name: str) -> str:
        return settings.SOURCE_URI_PREFIX + source_name

    async def summarize(self, source_name: str) -> SourceSummary:
        """
        Summary over every leaf of a source.

        Unlike the latest-reading query this reports the true overall span:
        the earliest first timestamp and the latest last timestamp.
        """
        source = await self.backend.get_source(source_name)
        leaves = await self.resolver.flatten(source)
        summary = SourceSummary(href=self.href_for(source.name))
        if not leaves:
            return summary

        stats = await gather_leaves(
            leaves,
            lambda leaf: self.backend.get_sensor_data_stats(leaf.name),
            self.resolver.concurrency,
        )
        populated = [s for s in stats if s.count]
        summary.total_sensor_datas = sum(s.count for s in populated)
        if populated:
            summary.first_sensor_data = min(s.first for s in populated)
            summary.last_sensor_data = max(s.last for s in populated)
        return summary
