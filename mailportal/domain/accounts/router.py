"""SMTP account router - FastAPI endpoints for relay account management

Handlers are plain ``def``: connection tests block on the network and
FastAPI runs them in its threadpool.
"""

import logging

from fastapi import APIRouter, Depends

from ...auth import get_current_user
from ...dependencies import get_account_registry, get_config_resolver, get_dispatch_engine
from ...models import User
from ...services.config_resolver import ConfigResolver, UsableConfig
from ...services.dispatch import DispatchEngine
from .providers import SMTP_PROVIDERS
from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    ConnectionTestResponse,
    InlineTestRequest,
)
from .service import AccountRegistry, validate_host, validate_port

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/smtp", tags=["SMTP"])


# ============================================================================
# ACCOUNT CRUD
# ============================================================================


@router.get("/configs")
def list_configs(
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    """Active SMTP accounts, default first"""
    accounts = registry.list_accounts(current_user)
    return {"success": True, "configs": [AccountResponse.from_account(a) for a in accounts]}


@router.get("/configs/{account_id}")
def get_config(
    account_id: int,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    account = registry.get_account(account_id, current_user)
    return {"success": True, "config": AccountResponse.from_account(account)}


@router.post("/configs", status_code=201)
def create_config(
    data: AccountCreate,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    account = registry.create_account(data, current_user)
    return {"success": True, "config": AccountResponse.from_account(account)}


@router.put("/configs/{account_id}")
def update_config(
    account_id: int,
    data: AccountUpdate,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    account = registry.update_account(account_id, data, current_user)
    return {"success": True, "config": AccountResponse.from_account(account)}


@router.post("/configs/{account_id}/set-default")
def set_default_config(
    account_id: int,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    registry.set_default(account_id, current_user)
    return {"success": True, "message": "Default SMTP configuration updated"}


@router.delete("/configs/{account_id}")
def delete_config(
    account_id: int,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    """Soft delete; the last active account is protected"""
    registry.deactivate(account_id, current_user)
    return {"success": True, "message": "SMTP configuration deleted successfully"}


# ============================================================================
# CONNECTION TESTS
# ============================================================================


@router.post("/configs/{account_id}/test", response_model=ConnectionTestResponse)
def test_saved_config(
    account_id: int,
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
    resolver: ConfigResolver = Depends(get_config_resolver),
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Re-test a stored account (health check)"""
    account = registry.get_account(account_id, current_user, active_only=True)
    result = engine.verify(resolver.from_account(account, current_user))
    return ConnectionTestResponse(
        success=result.success,
        message=result.message,
        errorKind=result.error_kind.value if result.error_kind else None,
    )


@router.post("/test", response_model=ConnectionTestResponse)
def test_inline_config(
    request: InlineTestRequest,
    current_user: User = Depends(get_current_user),
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """Test SMTP settings without saving them"""
    config = UsableConfig.from_inline(
        host=validate_host(request.host),
        port=validate_port(request.port),
        secure=request.secure,
        username=request.username,
        password=request.password,
    )
    result = engine.verify(config)
    return ConnectionTestResponse(
        success=result.success,
        message=result.message,
        errorKind=result.error_kind.value if result.error_kind else None,
    )


# ============================================================================
# PRESETS & LEGACY
# ============================================================================


@router.get("/providers")
def list_providers():
    """Predefined relay settings for common providers"""
    return {"success": True, "providers": SMTP_PROVIDERS}


@router.get("/config")
def get_default_config(
    current_user: User = Depends(get_current_user),
    registry: AccountRegistry = Depends(get_account_registry),
):
    """Legacy single-account endpoint: the current default, or null"""
    account = registry.get_default(current_user)
    return {"success": True, "config": AccountResponse.from_account(account) if account else None}
