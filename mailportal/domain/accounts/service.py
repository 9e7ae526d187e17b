"""SMTP account service - Business logic for relay accounts

Invariants held for every owner:
- among active accounts exactly one is default (as soon as one exists)
- the last active account cannot be deactivated
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ConflictError, NotFoundError, ValidationError
from ...models import SmtpAccount, User
from ...services.credential_vault import CredentialVault
from .repository import AccountRepository
from .schemas import AccountCreate, AccountUpdate

logger = logging.getLogger(__name__)

MIN_PORT = 1
MAX_PORT = 65535


def validate_port(port) -> int:
    if isinstance(port, bool):
        raise ValidationError("Invalid port number")
    try:
        port_num = int(port)
    except (TypeError, ValueError) as e:
        raise ValidationError("Invalid port number") from e
    if port_num < MIN_PORT or port_num > MAX_PORT:
        raise ValidationError("Invalid port number")
    return port_num


def validate_host(host: Optional[str]) -> str:
    host = (host or "").strip()
    if not host or any(ch.isspace() for ch in host):
        raise ValidationError("Invalid SMTP host")
    return host


def _require_text(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} cannot be empty")
    return value


class AccountRegistry:
    """Service layer for SMTP account business logic"""

    def __init__(self, db: Session, vault: CredentialVault):
        self.db = db
        self.vault = vault
        self.repo = AccountRepository()

    def list_accounts(self, user: User) -> list[SmtpAccount]:
        """Active accounts, default first, then newest first"""
        return self.repo.find_active_by_owner(self.db, user.id)

    def get_account(self, account_id: int, user: User, active_only: bool = False) -> SmtpAccount:
        account = self.repo.find_by_id(self.db, account_id, user.id, active_only=active_only)
        if not account:
            raise NotFoundError("SMTP configuration not found")
        return account

    def get_default(self, user: User) -> Optional[SmtpAccount]:
        return self.repo.find_default_by_owner(self.db, user.id)

    def get_first_active(self, user: User) -> Optional[SmtpAccount]:
        return self.repo.find_first_active_by_owner(self.db, user.id)

    def _lock_target(self, account: SmtpAccount, user: User) -> dict[int, SmtpAccount]:
        """
        Lock the owner's active accounts and make sure ``account`` is still
        one of them. The account was read before the lock; another request
        may have deactivated it since.
        """
        locked = self.repo.lock_owner_accounts(self.db, user.id)
        if account.id not in locked:
            raise NotFoundError("SMTP configuration not found")
        return locked

    def create_account(self, data: AccountCreate, user: User) -> SmtpAccount:
        """Register a new account; the owner's first active account always becomes default"""
        if not data.name or not data.host or data.port is None or not data.username or not data.password:
            raise ValidationError("Name, host, port, username, and password are required")

        account_data = {
            "name": _require_text(data.name, "Name"),
            "host": validate_host(data.host),
            "port": validate_port(data.port),
            "secure": bool(data.secure),
            "username": _require_text(data.username, "Username"),
            "password_encrypted": self.vault.encrypt(data.password),
            "from_name": data.fromName or user.display_name,
            "signature": data.signature or "",
        }

        logger.info(f"📥 Creating SMTP account '{account_data['name']}' for user {user.id}")
        try:
            with self.repo.transaction(self.db):
                self.repo.lock_owner_accounts(self.db, user.id)
                make_default = bool(data.isDefault) or self.repo.count_active_by_owner(self.db, user.id) == 0
                if make_default:
                    self.repo.clear_defaults(self.db, user.id)
                account = self.repo.create_account(
                    self.db, user.id, is_default=make_default, **account_data
                )
        except IntegrityError as e:
            logger.warning(f"⚠️ Concurrent default change for user {user.id}: {e}")
            raise ConflictError("Another default change is in progress, please retry") from e

        self.db.refresh(account)
        logger.info(f"✅ SMTP account {account.id} created (default={account.is_default})")
        return account

    def update_account(self, account_id: int, data: AccountUpdate, user: User) -> SmtpAccount:
        """Partial update; a new password is re-encrypted into a fresh envelope"""
        account = self.get_account(account_id, user, active_only=True)

        updates = {}
        if data.name is not None:
            updates["name"] = _require_text(data.name, "Name")
        if data.host is not None:
            updates["host"] = validate_host(data.host)
        if data.port is not None:
            updates["port"] = validate_port(data.port)
        if data.secure is not None:
            updates["secure"] = bool(data.secure)
        if data.username is not None:
            updates["username"] = _require_text(data.username, "Username")
        if data.password:
            updates["password_encrypted"] = self.vault.encrypt(data.password)
        if data.fromName is not None:
            updates["from_name"] = data.fromName
        if data.signature is not None:
            updates["signature"] = data.signature

        try:
            with self.repo.transaction(self.db):
                if data.isDefault is not None:
                    self._lock_target(account, user)
                    if data.isDefault is False and account.is_default:
                        raise ConflictError("Set another configuration as default instead of unsetting this one")
                    if data.isDefault and not account.is_default:
                        self.repo.clear_defaults(self.db, user.id, except_id=account.id)
                        updates["is_default"] = True
                self.repo.update_account(self.db, account, **updates)
        except IntegrityError as e:
            logger.warning(f"⚠️ Concurrent default change for user {user.id}: {e}")
            raise ConflictError("Another default change is in progress, please retry") from e

        self.db.refresh(account)
        logger.info(f"✅ SMTP account {account.id} updated ({', '.join(sorted(updates)) or 'no changes'})")
        return account

    def set_default(self, account_id: int, user: User) -> SmtpAccount:
        """Make the account the owner's single default, in one transaction"""
        account = self.get_account(account_id, user, active_only=True)

        try:
            with self.repo.transaction(self.db):
                self._lock_target(account, user)
                self.repo.atomic_set_default(self.db, user.id, account.id)
        except IntegrityError as e:
            logger.warning(f"⚠️ Concurrent default change for user {user.id}: {e}")
            raise ConflictError("Another default change is in progress, please retry") from e

        self.db.refresh(account)
        logger.info(f"⭐ SMTP account {account.id} is now default for user {user.id}")
        return account

    def deactivate(self, account_id: int, user: User) -> SmtpAccount:
        """
        Soft-delete an account. If it was the default, the oldest remaining
        active account takes over within the same transaction.
        """
        account = self.get_account(account_id, user, active_only=True)

        try:
            with self.repo.transaction(self.db):
                locked = self._lock_target(account, user)
                if len(locked) <= 1:
                    raise ConflictError("Cannot delete the only SMTP configuration")

                # is_default was reloaded by the lock, not read before it
                replacement = None
                if account.is_default:
                    replacement = self.repo.find_first_active_by_owner(self.db, user.id, exclude_id=account.id)

                # Demote before promoting: the unique index allows one default at a time
                self.repo.soft_deactivate(self.db, account)
                if replacement is not None:
                    self.repo.atomic_set_default(self.db, user.id, replacement.id)
        except IntegrityError as e:
            logger.warning(f"⚠️ Concurrent default change for user {user.id}: {e}")
            raise ConflictError("Another default change is in progress, please retry") from e

        self.db.refresh(account)
        if replacement is not None:
            logger.info(f"⭐ SMTP account {replacement.id} promoted to default for user {user.id}")
        logger.info(f"🗑️ SMTP account {account.id} deactivated for user {user.id}")
        return account
