"""
Resolve which relay a send (or connection test) should use.

Order: explicit account -> owner's default -> owner's oldest active account ->
deployment-wide fallback from the environment. Passwords are decrypted here
and nowhere else; ``UsableConfig`` keeps them out of ``repr``.
"""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings
from ..models import SmtpAccount, User
from .credential_vault import CredentialVault

logger = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


class UsableConfig(BaseModel):
    """Decrypted relay settings, held only for the duration of one dispatch"""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    secure: bool = False
    username: str = ""
    password: str = Field(default="", repr=False)
    from_name: Optional[str] = None
    from_address: str = ""
    signature: str = ""
    account_id: Optional[int] = None
    source: Literal["account", "environment", "inline"] = "account"

    @property
    def implicit_tls(self) -> bool:
        return self.secure or self.port == IMPLICIT_TLS_PORT

    @classmethod
    def from_inline(cls, host: str, port: int, secure: bool, username: str, password: str) -> "UsableConfig":
        return cls(
            host=host,
            port=port,
            secure=secure,
            username=username,
            password=password,
            from_address=username if "@" in username else "",
            source="inline",
        )


def _sender_address(username: str, user: User) -> str:
    # Most relays authenticate with the mailbox address itself
    return username if "@" in (username or "") else user.email


class ConfigResolver:
    def __init__(self, registry, vault: CredentialVault, settings: Settings):
        self.registry = registry
        self.vault = vault
        self.settings = settings

    def resolve(self, user: User, account_id: Optional[int] = None) -> UsableConfig:
        """
        Pick the relay for ``user``. An explicit ``account_id`` must be one of
        the user's active accounts (``NotFoundError`` otherwise).
        """
        if account_id is not None:
            account = self.registry.get_account(account_id, user, active_only=True)
        else:
            account = self.registry.get_default(user) or self.registry.get_first_active(user)

        if account is None:
            logger.info(f"ℹ️ User {user.id} has no SMTP account, using deployment fallback relay")
            return self._environment_config(user)

        return self.from_account(account, user)

    def from_account(self, account: SmtpAccount, user: User) -> UsableConfig:
        # CryptoError propagates: a corrupt envelope is not an authentication failure
        password = self.vault.decrypt(account.password_encrypted)
        return UsableConfig(
            host=account.host,
            port=account.port,
            secure=bool(account.secure),
            username=account.username,
            password=password,
            from_name=account.from_name or user.display_name,
            from_address=_sender_address(account.username, user),
            signature=account.signature or "",
            account_id=account.id,
            source="account",
        )

    def _environment_config(self, user: User) -> UsableConfig:
        s = self.settings
        return UsableConfig(
            host=s.default_smtp_host,
            port=s.default_smtp_port,
            secure=s.default_smtp_secure,
            username=s.default_smtp_user,
            password=s.default_smtp_password,
            from_name=user.display_name,
            from_address=s.default_smtp_from or _sender_address(s.default_smtp_user, user),
            source="environment",
        )
