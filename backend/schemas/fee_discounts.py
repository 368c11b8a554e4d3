from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from models.fee_discounts import DiscountType

class FeeDiscountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    discount_type: DiscountType
    value: Decimal = Field(gt=0)
    applicable_to: str = "all"
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("A percentage discount cannot exceed 100")
        return self

class FeeDiscount(BaseModel):
    id: int
    name: str
    discount_type: DiscountType
    value: Decimal
    applicable_to: str
    description: Optional[str] = None
    is_active: bool
    tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class StudentDiscountCreate(BaseModel):
    student_id: int
    reason: Optional[str] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

class StudentFeeDiscount(BaseModel):
    id: int
    student_id: int
    discount_id: int
    applied_by: Optional[str] = None
    reason: Optional[str] = None
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None
    is_active: bool
    discount: Optional[FeeDiscount] = None

    class Config:
        from_attributes = True
