"""Pydantic Schemas for claim document attachments."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentCreate(BaseModel):
    document_type: str = Field(..., min_length=1, max_length=50)
    file_name: str = Field(..., min_length=1, max_length=255)
    is_required: bool = False


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    claim_id: UUID
    document_type: str
    file_name: str
    is_required: bool
    compliance_verified: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    uploaded_by: str
    created_at: datetime
