from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

class FeeStructureBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    class_name: Optional[str] = None
    amount: Decimal = Field(gt=0)
    frequency: str = "term"
    due_day: int = Field(default=10, ge=1, le=28)
    is_mandatory: bool = True
    academic_year: Optional[str] = None

class FeeStructureCreate(FeeStructureBase):
    pass

class FeeStructureUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    frequency: Optional[str] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=28)
    is_mandatory: Optional[bool] = None
    is_active: Optional[bool] = None

class FeeStructure(FeeStructureBase):
    id: int
    is_active: bool
    tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
