# API v1 package
from meterhub.api.v1.users import router as users_router
from meterhub.api.v1.sources import router as sources_router
from meterhub.api.v1.sensor_data import router as sensor_data_router
from meterhub.api.v1.queries import router as queries_router

__all__ = [
    "users_router",
    "sources_router",
    "sensor_data_router",
    "queries_router",
]
