"""
Pydantic request/response schemas for the HalamangGaling Knowledge API

Field names are snake_case in Python and camelCase on the wire; both
spellings are accepted on input.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from database.models import AccessLevel, IPRStatus, KnowledgeType, VerificationStatus

EMAIL_PATTERN = re.compile(r'^[\w.+-]+@[\w-]+(\.[\w-]+)*\.\w{2,}$')

ScopeOfUse = Literal[
    'Research', 'Education', 'Publication', 'Commercial', 'Database Inclusion', 'Public Display'
]
ProtectionLevel = Literal['None', 'Community', 'National', 'International']
Sensitivity = Literal['Low', 'Medium', 'High', 'Sacred']
MediaType = Literal['Photo', 'Video', 'Audio', 'Document']
BenefitType = Literal[
    'Monetary', 'Non-monetary', 'Technology Transfer', 'Capacity Building',
    'Joint Research', 'Royalty', 'Other'
]


class CamelModel(BaseModel):
    """Accepts both field names and camelCase aliases"""
    model_config = {"populate_by_name": True}


# ============================================
# AUTH
# ============================================

class RegisterRequest(CamelModel):
    """Self-registration. Privileged roles are never granted here."""
    username: str = Field(..., min_length=3, max_length=50, description="Unique username")
    email: str = Field(..., max_length=255, description="Email address")
    password: str = Field(..., min_length=6, max_length=128, description="Password (minimum 6 characters)")
    role: Optional[str] = Field(
        default=None,
        description="Requested role; anything outside the self-registration roles becomes 'user'"
    )
    first_name: Optional[str] = Field(default=None, max_length=100, alias="firstName")
    last_name: Optional[str] = Field(default=None, max_length=100, alias="lastName")

    @field_validator('username')
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters long")
        return v

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email")
        return v


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, description="Email address or username")
    password: str = Field(..., min_length=1)


# ============================================
# KNOWLEDGE RECORDS
# ============================================

class Coordinates(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationModel(CamelModel):
    region: Optional[str] = None
    province: Optional[str] = None
    municipality: Optional[str] = None
    barangay: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class CommunityModel(CamelModel):
    name: str = Field(..., min_length=1, max_length=300)
    indigenous_group: str = Field(..., min_length=1, max_length=200, alias="indigenousGroup")
    location: Optional[LocationModel] = None


class TraditionalKnowledgeModel(CamelModel):
    description: str = Field(..., min_length=1)
    usage: Optional[str] = None
    preparation: Optional[str] = None
    rituals: Optional[str] = None
    prohibitions: Optional[str] = None
    seasonality: Optional[str] = None
    transmission_method: Optional[str] = Field(default=None, alias="transmissionMethod")


class WitnessModel(CamelModel):
    name: str
    role: Optional[str] = None
    signature: Optional[str] = None


class ConsentModel(CamelModel):
    """Prior informed consent supplied at creation"""
    obtained: bool
    consent_id: Optional[str] = Field(default=None, max_length=64, alias="consentId")
    consent_date: Optional[datetime] = Field(default=None, alias="consentDate")
    expiry_date: Optional[datetime] = Field(default=None, alias="expiryDate")
    scope_of_use: List[ScopeOfUse] = Field(default_factory=list, alias="scopeOfUse")
    consent_document: Optional[str] = Field(default=None, max_length=1000, alias="consentDocument")
    witnesses: List[WitnessModel] = Field(default_factory=list)
    restrictions: Optional[str] = None
    revocable: bool = True


class RightHolderModel(CamelModel):
    name: str
    relationship: Optional[str] = None
    contact_info: Optional[str] = Field(default=None, alias="contactInfo")


class IPRModel(CamelModel):
    status: IPRStatus = IPRStatus.PENDING_ASSESSMENT
    registration_number: Optional[str] = Field(default=None, alias="registrationNumber")
    registered_with: Optional[str] = Field(default=None, alias="registeredWith")
    registration_date: Optional[datetime] = Field(default=None, alias="registrationDate")
    protection_level: Optional[ProtectionLevel] = Field(default=None, alias="protectionLevel")
    right_holders: List[RightHolderModel] = Field(default_factory=list, alias="rightHolders")


class BenefitModel(CamelModel):
    type: BenefitType
    description: Optional[str] = None
    value: Optional[str] = None


class BenefitSharingModel(CamelModel):
    applicable: bool = False
    agreement_id: Optional[str] = Field(default=None, alias="agreementId")
    agreement_date: Optional[datetime] = Field(default=None, alias="agreementDate")
    terms: Optional[str] = None
    benefits: List[BenefitModel] = Field(default_factory=list)
    disbursement_schedule: Optional[str] = Field(default=None, alias="disbursementSchedule")
    community_contact: Optional[str] = Field(default=None, alias="communityContact")


class KnowledgeHolderModel(CamelModel):
    name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0)
    role: Optional[str] = None
    years_of_practice: Optional[int] = Field(default=None, ge=0, alias="yearsOfPractice")
    lineage: Optional[str] = None
    consent_given: Optional[bool] = Field(default=None, alias="consentGiven")
    anonymous: bool = False


class VerificationModel(CamelModel):
    status: VerificationStatus = VerificationStatus.UNVERIFIED
    verified_by: List[Dict[str, Any]] = Field(default_factory=list, alias="verifiedBy")
    community_approved: Optional[bool] = Field(default=None, alias="communityApproved")
    community_approval_date: Optional[datetime] = Field(default=None, alias="communityApprovalDate")


class SensitivityModel(CamelModel):
    level: Sensitivity = 'Medium'
    reason: Optional[str] = None
    cultural_significance: Optional[str] = Field(default=None, alias="culturalSignificance")


class MediaModel(CamelModel):
    type: MediaType
    url: str
    description: Optional[str] = None
    consent_for_use: Optional[bool] = Field(default=None, alias="consentForUse")
    watermarked: Optional[bool] = None


class KnowledgeCreateRequest(CamelModel):
    """New indigenous-knowledge record. Recorded-by and compliance are set by the server."""
    community: CommunityModel
    knowledge_type: KnowledgeType = Field(..., alias="knowledgeType")
    plants: List[str] = Field(default_factory=list, description="Medicinal plant ids")
    traditional_knowledge: TraditionalKnowledgeModel = Field(..., alias="traditionalKnowledge")
    consent: ConsentModel
    ipr: Optional[IPRModel] = None
    benefit_sharing: Optional[BenefitSharingModel] = Field(default=None, alias="benefitSharing")
    methodology: Optional[str] = None
    knowledge_holders: List[KnowledgeHolderModel] = Field(default_factory=list, alias="knowledgeHolders")
    verification: Optional[VerificationModel] = None
    access_level: Optional[AccessLevel] = Field(default=None, alias="accessLevel")
    access_restrictions: Optional[str] = Field(default=None, alias="accessRestrictions")
    sensitivity: Optional[SensitivityModel] = None
    media: List[MediaModel] = Field(default_factory=list)
    related_studies: List[str] = Field(default_factory=list, alias="relatedStudies")


class KnowledgeUpdateRequest(CamelModel):
    """Partial update. Consent, IPR, compliance, id, access log and active flag are ignored."""
    community: Optional[CommunityModel] = None
    knowledge_type: Optional[KnowledgeType] = Field(default=None, alias="knowledgeType")
    plants: Optional[List[str]] = None
    traditional_knowledge: Optional[TraditionalKnowledgeModel] = Field(default=None, alias="traditionalKnowledge")
    benefit_sharing: Optional[BenefitSharingModel] = Field(default=None, alias="benefitSharing")
    methodology: Optional[str] = None
    knowledge_holders: Optional[List[KnowledgeHolderModel]] = Field(default=None, alias="knowledgeHolders")
    verification: Optional[VerificationModel] = None
    access_level: Optional[AccessLevel] = Field(default=None, alias="accessLevel")
    access_restrictions: Optional[str] = Field(default=None, alias="accessRestrictions")
    sensitivity: Optional[SensitivityModel] = None
    media: Optional[List[MediaModel]] = None
    related_studies: Optional[List[str]] = Field(default=None, alias="relatedStudies")


class RevokeConsentRequest(CamelModel):
    reason: str = Field(..., max_length=1000, description="Why consent is being withdrawn")

    @field_validator('reason')
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reason for revocation is required")
        return v


class ApproveIPRRequest(CamelModel):
    ipr_status: Optional[IPRStatus] = Field(default=None, alias="iprStatus")
    registration_number: Optional[str] = Field(default=None, max_length=100, alias="registrationNumber")
    protection_level: Optional[ProtectionLevel] = Field(default=None, alias="protectionLevel")
    ncip_approved: Optional[bool] = Field(default=None, alias="ncipApproved")


class ArchiveRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


# ============================================
# RESPONSES
# ============================================

class PaginationInfo(BaseModel):
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=0, description="Zero-indexed page number")
    limit: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)


class ApiResponse(BaseModel):
    """Uniform response envelope"""
    success: bool = True
    data: Optional[Any] = None
    message: Optional[str] = None
    count: Optional[int] = None

    model_config = {"json_schema_extra": {"examples": [{"success": True, "data": {}}]}}


class PaginatedResponse(ApiResponse):
    pagination: PaginationInfo


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")
    errors: Optional[List[Dict[str, str]]] = Field(default=None, description="Every failing field")
    reason: Optional[str] = Field(default=None, description="Machine-readable reason")
    required: Optional[str] = Field(default=None, description="Access level the record requires")
    user_role: Optional[str] = Field(default=None, alias="userRole")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    success: bool = False
    message: str
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = Field(default="healthy", description="Service status")
    database: bool = Field(..., description="Database reachable")
    rate_limiting: bool = Field(..., alias="rateLimiting")
    version: str
    uptime_seconds: Optional[int] = Field(default=None, alias="uptimeSeconds")

    model_config = {"populate_by_name": True}
