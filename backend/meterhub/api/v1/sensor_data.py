"""
Sensor data endpoints.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from meterhub.api.deps import get_backend, get_resolver
from meterhub.core.exceptions import BadArgumentError
from meterhub.models.schemas import SensorData
from meterhub.services.virtual_sources import VirtualSourceResolver
from meterhub.storage.base import PersistenceBackend

router = APIRouter(prefix="/sources/{source_name}/sensordata", tags=["Sensor Data"])


@router.get("", response_model=List[SensorData])
async def get_sensor_data_range(
    source_name: str,
    start: datetime = Query(..., description="Inclusive start of the range"),
    end: Optional[datetime] = Query(None, description="Inclusive end; omitted means up to the newest reading"),
    backend: PersistenceBackend = Depends(get_backend)
):
    return await backend.get_sensor_data_range(source_name, start, end)


@router.get("/latest", response_model=SensorData)
async def get_latest_sensor_data(
    source_name: str,
    resolver: VirtualSourceResolver = Depends(get_resolver)
):
    """
    Newest reading. For a virtual source, the sum over its leaves stamped
    with the earliest of their latest timestamps.
    """
    return await resolver.latest_reading(source_name)


@router.get("/{timestamp}", response_model=SensorData)
async def get_sensor_data(
    source_name: str,
    timestamp: datetime,
    backend: PersistenceBackend = Depends(get_backend)
):
    return await backend.get_sensor_data(source_name, timestamp)


@router.put("", response_model=SensorData, status_code=status.HTTP_201_CREATED)
async def put_sensor_data(
    source_name: str,
    data: SensorData,
    backend: PersistenceBackend = Depends(get_backend)
):
    """
    Store a reading. Existing readings are never overwritten.
    """
    if data.source != source_name:
        raise BadArgumentError(
            f"Sensor data for source {data.source} posted to source {source_name}"
        )
    await backend.put_sensor_data(data)
    return data


@router.delete("/{timestamp}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sensor_data(
    source_name: str,
    timestamp: datetime,
    backend: PersistenceBackend = Depends(get_backend)
):
    await backend.delete_sensor_data(source_name, timestamp)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_all_sensor_data(
    source_name: str,
    backend: PersistenceBackend = Depends(get_backend)
):
    await backend.delete_all_sensor_data(source_name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
