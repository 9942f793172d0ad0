from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tasmota_admin.db.repository import DeviceRepository
from tasmota_admin.db.session import get_db
from tasmota_admin.models.storage import StorageOverview
from tasmota_admin.services.storage import storage_overview
from tasmota_admin.utils.dependencies import is_authenticated

router = APIRouter(prefix="/storage", tags=["Storage"], dependencies=[Depends(is_authenticated)])


@router.get("", response_model=StorageOverview)
def get_storage_overview(db: Session = Depends(get_db)):
    """Energy history storage of every device with totals."""
    repo = DeviceRepository(db)
    return storage_overview(repo, repo.list())
