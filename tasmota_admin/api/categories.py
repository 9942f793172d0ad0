import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tasmota_admin.db.models import Category
from tasmota_admin.db.repository import CategoryRepository
from tasmota_admin.db.session import get_db
from tasmota_admin.models.category import CategoryCreate, CategoryRead, CategoryUpdate, CategoryWithCount
from tasmota_admin.utils.dependencies import is_authenticated

router = APIRouter(prefix="/categories", tags=["Categories"], dependencies=[Depends(is_authenticated)])
logger = logging.getLogger(__name__)


def _get_category(repo: CategoryRepository, category_id: str) -> Category:
    category = repo.get(category_id)
    if category is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


def _with_count(category: Category, count: int) -> CategoryWithCount:
    return CategoryWithCount(**CategoryRead.model_validate(category).model_dump(), device_count=count)


@router.get("", response_model=List[CategoryWithCount])
def list_categories(db: Session = Depends(get_db)):
    return [_with_count(category, count) for category, count in CategoryRepository(db).list_with_counts()]


@router.post("", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
def create_category(body: CategoryCreate, db: Session = Depends(get_db)):
    repo = CategoryRepository(db)
    if repo.get_by_name(body.name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category with this name already exists")

    category = Category(**body.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info(f"Category '{category.name}' created")
    return category


@router.get("/{category_id}", response_model=CategoryWithCount)
def get_category(category_id: str, db: Session = Depends(get_db)):
    repo = CategoryRepository(db)
    category = _get_category(repo, category_id)
    return _with_count(category, repo.device_count(category))


@router.put("/{category_id}", response_model=CategoryRead)
def update_category(category_id: str, body: CategoryUpdate, db: Session = Depends(get_db)):
    repo = CategoryRepository(db)
    category = _get_category(repo, category_id)

    changes = body.model_dump(exclude_unset=True)
    if changes.get("name") and changes["name"] != category.name:
        existing = repo.get_by_name(changes["name"])
        if existing is not None and existing.id != category.id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category with this name already exists")

    for field, value in changes.items():
        if value is None and field in ("name", "color"):
            continue
        setattr(category, field, value)
    db.commit()
    db.refresh(category)
    return category


@router.delete("/{category_id}")
def delete_category(category_id: str, db: Session = Depends(get_db)):
    repo = CategoryRepository(db)
    category = _get_category(repo, category_id)

    if category.is_default:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Default categories cannot be deleted")
    in_use = repo.device_count(category)
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "Category is still assigned to devices", "device_count": in_use},
        )

    name = category.name
    db.delete(category)
    db.commit()
    logger.info(f"Category '{name}' deleted")
    return {"message": "Category deleted successfully"}
