"""
User management endpoints.
"""
from typing import List

from fastapi import APIRouter, Depends, Response, status

from meterhub.api.deps import get_backend
from meterhub.core.logging import get_logger
from meterhub.models.schemas import User
from meterhub.storage.base import PersistenceBackend

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=List[User])
async def list_users(backend: PersistenceBackend = Depends(get_backend)):
    return await backend.get_users()


@router.get("/{username}", response_model=User)
async def get_user(username: str, backend: PersistenceBackend = Depends(get_backend)):
    return await backend.get_user(username)


@router.put("", response_model=User, status_code=status.HTTP_201_CREATED)
async def create_user(user: User, backend: PersistenceBackend = Depends(get_backend)):
    """
    Store a new user. Usernames are never overwritten.
    """
    await backend.put_user(user)
    logger.info(f"Created user {user.username}")
    return user


@router.delete("/{username}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(username: str, backend: PersistenceBackend = Depends(get_backend)):
    """
    Delete a user together with every source it owns.
    """
    await backend.delete_user(username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
