"""
schemas/inventory.py
--------------------

Models for inventory rows and shift updates.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class InventoryItem(BaseModel):
    id: int
    name: str
    image_url: Optional[str] = None
    quantity: float = 0
    expiry_date: Optional[str] = None
    branch_id: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ShiftUpdate(BaseModel):
    user_id: str
    day: str
    shift: str

    @field_validator("user_id", "day")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()
