# backend/app/schemas/clients.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator


class ClientCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    model_config = {"from_attributes": True}


class ClientRead(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
