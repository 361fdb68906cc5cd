"""
Power, energy and carbon queries over physical and virtual sources.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from meterhub.api.deps import get_resolver
from meterhub.models.schemas import SensorData
from meterhub.services.virtual_sources import VirtualSourceResolver

router = APIRouter(prefix="/sources/{source_name}", tags=["Queries"])


@router.get("/power", response_model=SensorData)
async def get_power(
    source_name: str,
    timestamp: datetime = Query(..., description="Point in time to report power for"),
    resolver: VirtualSourceResolver = Depends(get_resolver)
):
    """
    Power generated and consumed at a timestamp, interpolated between
    neighbouring readings when none exists exactly at that time.
    """
    return await resolver.power_at(source_name, timestamp)


@router.get("/energy", response_model=SensorData)
async def get_energy(
    source_name: str,
    start: datetime = Query(...),
    end: Optional[datetime] = Query(None, description="Omitted means up to the latest data"),
    interval: Optional[int] = Query(None, ge=0, description="Sampling interval in minutes"),
    resolver: VirtualSourceResolver = Depends(get_resolver)
):
    return await resolver.interval_energy(source_name, start, end, interval)


@router.get("/carbon", response_model=SensorData)
async def get_carbon(
    source_name: str,
    start: datetime = Query(...),
    end: Optional[datetime] = Query(None, description="Omitted means up to the latest data"),
    interval: Optional[int] = Query(None, ge=0, description="Sampling interval in minutes"),
    resolver: VirtualSourceResolver = Depends(get_resolver)
):
    return await resolver.carbon(source_name, start, end, interval)
