# schemas/payouts.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class BatchCreate(BaseModel):
    # None = every eligible creator
    creator_ids: Optional[List[int]] = None
    note: Optional[str] = None


class CommissionLockIn(BaseModel):
    until: Optional[datetime] = None
    reason: Optional[str] = None


class PromoteIn(BaseModel):
    # Testing / backdating hook; default is now
    now: Optional[datetime] = None


class AuditLogOut(BaseModel):
    id: int
    actor: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    details: Optional[dict] = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
