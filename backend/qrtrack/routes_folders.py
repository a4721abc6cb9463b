from typing import List
from fastapi import APIRouter, Depends
from . import schemas, models
from .auth import get_current_user, require_owner
from .storage import Storage, get_storage

router = APIRouter(prefix="/api/folders", tags=["folders"])


@router.post("/", response_model=schemas.FolderOut)
def create_folder(
    data: schemas.FolderCreate,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return storage.create_folder(data.name, user.id)


@router.get("/", response_model=List[schemas.FolderOut])
def list_folders(user: models.User = Depends(get_current_user), storage: Storage = Depends(get_storage)):
    return storage.list_folders(user.id)


@router.delete("/{folder_id}")
def delete_folder(
    folder_id: int,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Delete a folder; the codes in it are kept, unfiled."""
    folder = require_owner(storage.get_folder(folder_id), user, "Folder")
    storage.delete_folder(folder.id)
    return {"message": "Folder deleted successfully"}
