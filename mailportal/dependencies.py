"""FastAPI dependency wiring for the services. Everything hangs off ``get_settings`` so tests can override one place."""

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import get_db
from .domain.accounts.service import AccountRegistry
from .services.attachment_stager import AttachmentStager
from .services.config_resolver import ConfigResolver
from .services.credential_vault import CredentialVault
from .services.dispatch import DispatchEngine


def get_vault(settings: Settings = Depends(get_settings)) -> CredentialVault:
    return CredentialVault(settings.encryption_key)


def get_dispatch_engine(settings: Settings = Depends(get_settings)) -> DispatchEngine:
    return DispatchEngine.from_settings(settings)


def get_attachment_stager(settings: Settings = Depends(get_settings)) -> AttachmentStager:
    return AttachmentStager.from_settings(settings)


def get_account_registry(
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
) -> AccountRegistry:
    return AccountRegistry(db, vault)


def get_config_resolver(
    registry: AccountRegistry = Depends(get_account_registry),
    vault: CredentialVault = Depends(get_vault),
    settings: Settings = Depends(get_settings),
) -> ConfigResolver:
    return ConfigResolver(registry, vault, settings)
