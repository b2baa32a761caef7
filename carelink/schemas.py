from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from carelink.config import MAX_GRANT_HOURS

class SearchIn(BaseModel):
    query: str = Field(..., min_length=1)

class SearchOut(BaseModel):
    profile_id: str
    name: str
    carebag_id: Optional[str] = None
    already_linked: bool

class LinkRequestIn(BaseModel):
    query: str = Field(..., min_length=1)

class ChallengeOut(BaseModel):
    challenge_id: str
    expires_at: datetime
    delivered_to: str

class LinkRequestOut(BaseModel):
    status: str
    profile_id: str
    challenge: Optional[ChallengeOut] = None

class ConfirmIn(BaseModel):
    code: str

class ConfirmOut(BaseModel):
    status: str
    profile_id: str

class LinkOut(BaseModel):
    profile_id: str
    name: str
    carebag_id: Optional[str] = None
    consent_timestamp: Optional[datetime] = None
    linked_at: Optional[datetime] = None

class PartnerProfileIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = None

class PartnerProfileOut(BaseModel):
    profile_id: str
    carebag_id: str

class GrantIn(BaseModel):
    doctor_id: str
    hours: int = Field(24, ge=1, le=MAX_GRANT_HOURS)

class GrantOut(BaseModel):
    grant_id: str
    profile_id: str
    expires_at: datetime
    is_revoked: bool
    is_valid: bool
    expiring_soon: bool
    time_remaining: str

class GrantList(BaseModel):
    grants: List[GrantOut]

class AccessOut(BaseModel):
    profile_id: str
    allowed: bool
