"""
FastAPI HalamangGaling Knowledge API Server

Provides REST API endpoints for the indigenous-knowledge registry: accounts,
consent-gated record access, consent revocation and IPR review.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Query, Security, status
from fastapi.responses import RedirectResponse
from fastapi.security import APIKeyHeader
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from access_control import Principal
from api.middleware import (
    RequestLoggingMiddleware,
    setup_cors,
    setup_exception_handlers,
)
from api.models import (
    ApiResponse,
    ApproveIPRRequest,
    ArchiveRequest,
    ErrorResponse,
    HealthResponse,
    KnowledgeCreateRequest,
    KnowledgeUpdateRequest,
    LoginRequest,
    PaginatedResponse,
    RegisterRequest,
    RevokeConsentRequest,
)
from auth import AuthenticationError, extract_bearer_token
from config_manager import ConfigManager, ConfigurationError, get_config
from database.account_service import AccountService
from database.connection import close_db, get_db, init_db
from database.knowledge_service import KnowledgeService
from database.models import AuditAction, IPRStatus, KnowledgeType, User
from database.repositories import KnowledgeFilters
from log_utils import setup_logging
from rate_limiter import RateLimitMiddleware, create_rate_limiter
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
CREATE_TABLES_ON_STARTUP = os.getenv("CREATE_TABLES_ON_STARTUP", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_EXCLUDE_PATHS = ["/", "/api/health", "/api/docs", "/api/redoc", "/api/openapi.json"]

# Global state
_startup_time: Optional[datetime] = None
_rate_limiting_enabled = False

# Bearer token header; read raw so that a malformed header is a 401, not a silent anonymous
auth_header = APIKeyHeader(name="Authorization", auto_error=False)

AUTH_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing, invalid or expired token"},
    403: {"model": ErrorResponse, "description": "Access denied"},
}
RECORD_RESPONSES = {
    **AUTH_RESPONSES,
    400: {"model": ErrorResponse, "description": "Validation error"},
    404: {"model": ErrorResponse, "description": "Indigenous knowledge not found"},
    500: {"model": ErrorResponse, "description": "Storage failure"},
}


# ============================================
# DEPENDENCIES
# ============================================

def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    return get_config()


def get_account_service(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
) -> AccountService:
    return AccountService(db, config)


def get_knowledge_service(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
) -> KnowledgeService:
    return KnowledgeService(db, config)


def get_current_user(
    authorization: Optional[str] = Security(auth_header),
    accounts: AccountService = Depends(get_account_service),
) -> User:
    """Active account named by the bearer token.

    Raises:
        AuthenticationError: no token, bad or expired token, or inactive account
    """
    try:
        token = extract_bearer_token(authorization)
        return accounts.resolve_user(token)
    except AuthenticationError as e:
        get_security_logger().log_auth_failure(reason=e.reason, source="api.get_current_user")
        raise


def get_optional_user(
    authorization: Optional[str] = Security(auth_header),
    accounts: AccountService = Depends(get_account_service),
) -> Optional[User]:
    """None without an Authorization header; a present but bad token still fails."""
    if not authorization:
        return None
    return get_current_user(authorization, accounts)


def get_current_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal.from_user(user)


def get_optional_principal(user: Optional[User] = Depends(get_optional_user)) -> Principal:
    return Principal.from_user(user) if user is not None else Principal.anonymous()


# ============================================
# APPLICATION
# ============================================

app = FastAPI(
    title="HalamangGaling Knowledge API",
    description=(
        "Consent-gated access to indigenous knowledge about Philippine medicinal plants. "
        "Honors prior informed consent, IPRA and Nagoya Protocol obligations."
    ),
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)


def _setup_rate_limiting(application: FastAPI) -> bool:
    """Middleware must be registered before the app starts serving."""
    config = get_config()
    limiter = create_rate_limiter(config.rate_limit)
    if limiter is None:
        return False
    application.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        auth_config=config.auth,
        exclude_paths=RATE_LIMIT_EXCLUDE_PATHS,
    )
    return True


# Setup middleware
_rate_limiting_enabled = _setup_rate_limiting(app)
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Configure logging, connect to the database and create tables."""
    global _startup_time

    try:
        config = get_config()
        setup_logging(config.logging)
        logger.info("Starting HalamangGaling Knowledge API...")

        provider = init_db()
        if CREATE_TABLES_ON_STARTUP:
            provider.create_tables()

        _startup_time = datetime.now(timezone.utc)
        logger.info(
            "API ready: rate limiting %s, page size %d",
            "enabled" if _rate_limiting_enabled else "disabled",
            config.access.page_size,
        )

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {type(e).__name__}: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down HalamangGaling Knowledge API...")
    close_db()


@app.get("/", include_in_schema=False)
async def root():
    return RedirectResponse(url="/api/docs")


@app.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database status",
)
def health_check(db: Session = Depends(get_db)):
    """``status`` is ``degraded`` while the database cannot be queried."""
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unreachable: {type(e).__name__}")
        database_ok = False

    uptime = None
    if _startup_time is not None:
        uptime = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database=database_ok,
        rate_limiting=_rate_limiting_enabled,
        version=API_VERSION,
        uptime_seconds=uptime,
    )


# ============================================
# AUTH
# ============================================

@app.post(
    "/api/auth/register",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Validation error"},
        409: {"model": ErrorResponse, "description": "Email or username already taken"},
    },
    summary="Register an account",
)
def register(
    request: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
):
    result = accounts.register(
        username=request.username,
        email=request.email,
        password=request.password,
        role=request.role,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return ApiResponse(message="User registered successfully", data=result)


@app.post(
    "/api/auth/login",
    response_model=ApiResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Log in by email or username",
)
def login(
    request: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
):
    result = accounts.login(request.email, request.password)
    return ApiResponse(message="Login successful", data=result)


@app.get(
    "/api/auth/profile",
    response_model=ApiResponse,
    responses=AUTH_RESPONSES,
    summary="Current account",
)
def profile(
    principal: Principal = Depends(get_current_principal),
    accounts: AccountService = Depends(get_account_service),
):
    return ApiResponse(data=accounts.profile(principal))


# ============================================
# INDIGENOUS KNOWLEDGE
# ============================================

@app.get(
    "/api/indigenous-knowledge",
    response_model=PaginatedResponse,
    responses=RECORD_RESPONSES,
    summary="List visible records",
    description="Role-scoped listing; filters narrow the caller's scope, never widen it.",
)
def list_knowledge(
    community: Optional[str] = Query(None, max_length=300),
    indigenous_group: Optional[str] = Query(None, alias="indigenousGroup", max_length=200),
    knowledge_type: Optional[KnowledgeType] = Query(None, alias="knowledgeType"),
    ipr_status: Optional[IPRStatus] = Query(None, alias="iprStatus"),
    consent_status: Optional[Literal["valid"]] = Query(None, alias="consentStatus"),
    page: int = Query(0, ge=0, description="Zero-indexed page"),
    principal: Principal = Depends(get_optional_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    filters = KnowledgeFilters(
        community=community,
        indigenous_group=indigenous_group,
        knowledge_type=knowledge_type,
        ipr_status=ipr_status,
        consent_valid=consent_status == "valid",
    )
    result = service.list_records(principal, filters, page)
    return PaginatedResponse(
        data=result["items"],
        count=len(result["items"]),
        pagination=result["pagination"],
    )


@app.get(
    "/api/indigenous-knowledge/public",
    response_model=ApiResponse,
    summary="Public collection",
)
def list_public_knowledge(service: KnowledgeService = Depends(get_knowledge_service)):
    items = service.list_public()
    return ApiResponse(data=items, count=len(items))


@app.get(
    "/api/indigenous-knowledge/pending/ipr-review",
    response_model=ApiResponse,
    responses=AUTH_RESPONSES,
    summary="Records awaiting IPR assessment",
)
def pending_ipr_review(
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    items = service.pending_ipr_review(principal)
    return ApiResponse(data=items, count=len(items))


@app.get(
    "/api/indigenous-knowledge/community/{community_name}",
    response_model=ApiResponse,
    responses=AUTH_RESPONSES,
    summary="Records of one community",
)
def list_community_knowledge(
    community_name: str,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    items = service.list_by_community(principal, community_name)
    return ApiResponse(data=items, count=len(items))


@app.get(
    "/api/indigenous-knowledge/{record_id}",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Read one record",
    description="Every successful read is appended to the record's access log.",
)
def get_knowledge(
    record_id: str,
    purpose: Optional[str] = Query(None, max_length=500),
    principal: Principal = Depends(get_optional_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    return ApiResponse(data=service.view_record(principal, record_id, purpose))


@app.post(
    "/api/indigenous-knowledge",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    responses=RECORD_RESPONSES,
    summary="Create a record",
)
def create_knowledge(
    request: KnowledgeCreateRequest,
    user: User = Depends(get_current_user),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    record = service.create_record(Principal.from_user(user), request.model_dump(), author=user)
    return ApiResponse(
        message="Indigenous knowledge created successfully. Pending NCIP review.",
        data=record,
    )


@app.put(
    "/api/indigenous-knowledge/{record_id}",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Update a record",
)
def update_knowledge(
    record_id: str,
    request: KnowledgeUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    record = service.update_record(principal, record_id, request.model_dump(exclude_unset=True))
    return ApiResponse(message="Indigenous knowledge updated successfully", data=record)


@app.delete(
    "/api/indigenous-knowledge/{record_id}",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Archive a record",
)
def archive_knowledge(
    record_id: str,
    request: Optional[ArchiveRequest] = None,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    reason = request.reason if request is not None else None
    result = service.archive_record(principal, record_id, reason)
    return ApiResponse(message="Indigenous knowledge archived successfully", data=result)


@app.post(
    "/api/indigenous-knowledge/{record_id}/revoke-consent",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Revoke prior informed consent",
)
def revoke_consent(
    record_id: str,
    request: RevokeConsentRequest,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    result = service.revoke_consent(principal, record_id, request.reason)
    return ApiResponse(message="Consent revoked successfully. Knowledge access restricted.", data=result)


@app.get(
    "/api/indigenous-knowledge/{record_id}/access-log",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Access log of a record",
)
def get_access_log(
    record_id: str,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    return ApiResponse(data=service.get_access_log(principal, record_id))


@app.post(
    "/api/indigenous-knowledge/{record_id}/approve-ipr",
    response_model=ApiResponse,
    responses=RECORD_RESPONSES,
    summary="Record an IPR assessment",
)
def approve_ipr(
    record_id: str,
    request: ApproveIPRRequest,
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    result = service.approve_ipr(principal, record_id, request.model_dump(exclude_unset=True))
    return ApiResponse(message="IPR status updated successfully", data=result)


# ============================================
# AUDIT
# ============================================

@app.get(
    "/api/audit-logs",
    response_model=PaginatedResponse,
    responses=AUTH_RESPONSES,
    summary="System-wide audit trail",
    description="Admin only; newest entries first.",
)
def list_audit_logs(
    action: Optional[AuditAction] = Query(None),
    resource_id: Optional[str] = Query(None, alias="resourceId", max_length=100),
    page: int = Query(0, ge=0, description="Zero-indexed page"),
    principal: Principal = Depends(get_current_principal),
    service: KnowledgeService = Depends(get_knowledge_service),
):
    result = service.audit_trail(principal, action=action, resource_id=resource_id, page=page)
    return PaginatedResponse(
        data=result["items"],
        count=len(result["items"]),
        pagination=result["pagination"],
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.server:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=False,
    )
