# backend/app/schemas/services.py

from typing import Optional
from pydantic import BaseModel, Field


class ServiceCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    duration_min: int = Field(gt=0)
    price: float = Field(ge=0)
    requires_payment: bool = True

    model_config = {"from_attributes": True}


class ServiceUpdate(BaseModel):
    is_active: Optional[bool] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    duration_min: Optional[int] = Field(None, gt=0)
    price: Optional[float] = Field(None, ge=0)
    requires_payment: Optional[bool] = None

    model_config = {"from_attributes": True}


class ServiceRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    duration_min: int
    price: float
    requires_payment: bool
    is_active: bool

    model_config = {"from_attributes": True}
