from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    color: str = Field(..., pattern=HEX_COLOR, description="Hex color, e.g. #3B82F6")
    icon: Optional[str] = None
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    icon: Optional[str] = None
    description: Optional[str] = None


class CategoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    color: str
    icon: Optional[str] = None
    description: Optional[str] = None
    is_default: bool
    created_at: datetime
    updated_at: datetime


class CategoryWithCount(CategoryRead):
    device_count: int = 0


class CategoryStat(BaseModel):
    """Device count of one category; ``category_id`` is None for uncategorized devices."""
    category_id: Optional[str] = None
    category_name: str
    category_color: str
    count: int
