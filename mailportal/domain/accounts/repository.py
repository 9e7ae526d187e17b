"""SMTP account repository - Database operations for relay accounts

Methods flush but never commit; callers group them with ``transaction`` so
multi-step default changes land as one unit.
"""

from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import NotFoundError
from ...models import SmtpAccount


class AccountRepository:
    """Repository for SMTP account database operations"""

    @staticmethod
    @contextmanager
    def transaction(db: Session):
        """Commit everything done inside the block, or roll it all back"""
        try:
            yield
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def find_by_id(
        db: Session, account_id: int, user_id: int, active_only: bool = False
    ) -> Optional[SmtpAccount]:
        """Get an account owned by the user"""
        query = db.query(SmtpAccount).filter(SmtpAccount.id == account_id, SmtpAccount.user_id == user_id)
        if active_only:
            query = query.filter(SmtpAccount.is_active.is_(True))
        return query.first()

    @staticmethod
    def find_active_by_owner(db: Session, user_id: int) -> list[SmtpAccount]:
        """Active accounts, default first, then newest first"""
        return (
            db.query(SmtpAccount)
            .filter(SmtpAccount.user_id == user_id, SmtpAccount.is_active.is_(True))
            .order_by(SmtpAccount.is_default.desc(), SmtpAccount.created_at.desc(), SmtpAccount.id.desc())
            .all()
        )

    @staticmethod
    def find_default_by_owner(db: Session, user_id: int) -> Optional[SmtpAccount]:
        return (
            db.query(SmtpAccount)
            .filter(
                SmtpAccount.user_id == user_id,
                SmtpAccount.is_active.is_(True),
                SmtpAccount.is_default.is_(True),
            )
            .first()
        )

    @staticmethod
    def find_first_active_by_owner(
        db: Session, user_id: int, exclude_id: Optional[int] = None
    ) -> Optional[SmtpAccount]:
        """Oldest active account (creation time, then id as a stable tie-break)"""
        query = db.query(SmtpAccount).filter(SmtpAccount.user_id == user_id, SmtpAccount.is_active.is_(True))
        if exclude_id is not None:
            query = query.filter(SmtpAccount.id != exclude_id)
        return query.order_by(SmtpAccount.created_at.asc(), SmtpAccount.id.asc()).first()

    @staticmethod
    def count_active_by_owner(db: Session, user_id: int) -> int:
        return (
            db.query(SmtpAccount)
            .filter(SmtpAccount.user_id == user_id, SmtpAccount.is_active.is_(True))
            .count()
        )

    @staticmethod
    def lock_owner_accounts(db: Session, user_id: int) -> dict[int, SmtpAccount]:
        """
        Row-lock the owner's active accounts for the rest of the transaction
        and reload them, so decisions below the lock see committed state.
        Returns the locked accounts by id (the lock is a no-op on SQLite).
        """
        accounts = (
            db.query(SmtpAccount)
            .filter(SmtpAccount.user_id == user_id, SmtpAccount.is_active.is_(True))
            .order_by(SmtpAccount.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        return {account.id: account for account in accounts}

    @staticmethod
    def create_account(db: Session, user_id: int, **account_data) -> SmtpAccount:
        account = SmtpAccount(user_id=user_id, is_active=True, **account_data)
        db.add(account)
        db.flush()
        return account

    @staticmethod
    def update_account(db: Session, account: SmtpAccount, **updates) -> SmtpAccount:
        """Apply only the provided fields"""
        for key, value in updates.items():
            if hasattr(account, key):
                setattr(account, key, value)
        db.flush()
        return account

    @staticmethod
    def clear_defaults(db: Session, user_id: int, except_id: Optional[int] = None) -> int:
        query = db.query(SmtpAccount).filter(
            SmtpAccount.user_id == user_id,
            SmtpAccount.is_default.is_(True),
        )
        if except_id is not None:
            query = query.filter(SmtpAccount.id != except_id)
        return query.update({SmtpAccount.is_default: False}, synchronize_session="fetch")

    @staticmethod
    def atomic_set_default(db: Session, user_id: int, account_id: int) -> None:
        """
        Demote every other default, then promote the target. Call inside
        ``transaction``: if the target is no longer active nothing is promoted
        and ``NotFoundError`` rolls the demotion back with it.
        """
        AccountRepository.clear_defaults(db, user_id, except_id=account_id)
        promoted = (
            db.query(SmtpAccount)
            .filter(
                SmtpAccount.id == account_id,
                SmtpAccount.user_id == user_id,
                SmtpAccount.is_active.is_(True),
            )
            .update({SmtpAccount.is_default: True}, synchronize_session="fetch")
        )
        if promoted != 1:
            raise NotFoundError("SMTP configuration not found")

    @staticmethod
    def soft_deactivate(db: Session, account: SmtpAccount) -> SmtpAccount:
        """Terminal state: inactive accounts are never default"""
        account.is_active = False
        account.is_default = False
        db.flush()
        return account
