from datetime import datetime
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID


class UserOut(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None
    role: str
    company_id: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)


class AssetCreate(BaseModel):
    title: str
    asset_type: str
    storage_locator: str
    upload_channel: str = "REVIEWED"
    description: Optional[str] = None
    tags: List[str] = []
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    target_platforms: List[str] = []
    campaign_name: Optional[str] = None
    company_id: Optional[UUID] = None


class AssetOut(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    tags: List[str] = []
    asset_type: str
    upload_channel: str
    status: str
    visibility: str
    allowed_role: Optional[str] = None
    rejection_reason: Optional[str] = None
    company_id: Optional[UUID] = None
    owner_id: UUID
    storage_locator: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    target_platforms: List[str] = []
    campaign_name: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by_id: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)


class AssetPageOut(BaseModel):
    items: List[AssetOut]
    total: int
    page: int
    limit: int
    total_pages: int
    model_config = ConfigDict(from_attributes=True)


class ApproveIn(BaseModel):
    # left optional so a missing value is reported as a domain validation error
    visibility: Optional[str] = None
    allowed_role: Optional[str] = None


class RejectIn(BaseModel):
    reason: Optional[str] = None


class VisibilityChangeIn(BaseModel):
    visibility: Optional[str] = None
    allowed_role: Optional[str] = None


class ReviseIn(BaseModel):
    storage_locator: str
    file_size: Optional[int] = None


class AssetVersionOut(BaseModel):
    id: UUID
    asset_id: UUID
    version_number: int
    storage_locator: str
    file_size: Optional[int] = None
    created_by_id: UUID
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class PermissionsOut(BaseModel):
    can_view: bool
    can_edit: bool
    can_delete: bool
    can_approve: bool
    can_share: bool
    can_modify_visibility: bool
    reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ShareCreate(BaseModel):
    user_ids: List[UUID] = Field(min_length=1)


class ShareOut(BaseModel):
    id: UUID
    asset_id: UUID
    shared_by_id: UUID
    shared_with_id: UUID
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class DownloadCreate(BaseModel):
    platforms: List[str] = []


class DownloadOut(BaseModel):
    id: UUID
    asset_id: UUID
    downloaded_by_id: UUID
    platforms: List[str] = []
    downloaded_at: datetime
    model_config = ConfigDict(from_attributes=True)


class UsageCreate(BaseModel):
    platform: str
    campaign_name: str
    post_url: Optional[str] = None


class UsageOut(BaseModel):
    id: UUID
    asset_id: UUID
    logged_by_id: UUID
    platform: str
    campaign_name: str
    post_url: Optional[str] = None
    used_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogOut(BaseModel):
    id: UUID
    actor_id: UUID
    action: str
    resource_type: str
    resource_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditPageOut(BaseModel):
    records: List[AuditLogOut]
    total: int
    page: int
    limit: int
    total_pages: int
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    key: str
    count: int
