from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    false,
    text,
    true,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp with microseconds (server_default=now() is only second-precise on SQLite)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    smtp_accounts = relationship("SmtpAccount", back_populates="user")
    emails = relationship("Email", back_populates="user")

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]


class SmtpAccount(Base):
    """Outbound relay credentials owned by one user. Never hard-deleted."""

    __tablename__ = "smtp_accounts"
    __table_args__ = (
        # At most one default among a user's active accounts
        Index(
            "uq_smtp_accounts_user_default",
            "user_id",
            unique=True,
            postgresql_where=text("is_default AND is_active"),
            sqlite_where=text("is_default = 1 AND is_active = 1"),
        ),
        Index("ix_smtp_accounts_user_active", "user_id", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    host = Column(String(255), nullable=False)  # e.g., smtp.gmail.com
    port = Column(Integer, nullable=False, default=587)  # 587 for STARTTLS, 465 for SSL
    secure = Column(Boolean, nullable=False, default=False)  # implicit TLS
    username = Column(String(255), nullable=False)
    password_encrypted = Column(String(1024), nullable=False)  # hex(iv):hex(ciphertext)
    from_name = Column(String(255), nullable=True)
    signature = Column(Text, nullable=False, default="")
    is_default = Column(Boolean, nullable=False, default=False, server_default=false())
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="smtp_accounts")
    emails = relationship("Email", back_populates="smtp_account")


class Email(Base):
    __tablename__ = "emails"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    smtp_account_id = Column(Integer, ForeignKey("smtp_accounts.id"), nullable=True)
    from_address = Column(String(255), nullable=False)
    to_addresses = Column(Text, nullable=False)  # comma-separated
    cc_addresses = Column(Text, nullable=True)
    bcc_addresses = Column(Text, nullable=True)
    subject = Column(String(998), nullable=False)  # RFC 5322 line limit
    body_html = Column(Text, nullable=True)
    body_text = Column(Text, nullable=True)
    folder = Column(String(50), nullable=False, default="SENT", index=True)  # INBOX, SENT, DRAFTS, TRASH, SPAM
    is_read = Column(Boolean, nullable=False, default=True)
    is_starred = Column(Boolean, nullable=False, default=False)
    message_id = Column(String(255), nullable=True)  # Message-ID accepted by the relay
    error_kind = Column(String(50), nullable=True)  # set when the relay refused the message
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="emails")
    smtp_account = relationship("SmtpAccount", back_populates="emails")
    attachments = relationship(
        "Attachment", back_populates="email", cascade="all, delete-orphan", order_by="Attachment.id"
    )


class Attachment(Base):
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, index=True)
    email_id = Column(Integer, ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)  # original upload name
    content_type = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=False)
    file_path = Column(String(1024), nullable=False)  # staged location on disk

    email = relationship("Email", back_populates="attachments")
