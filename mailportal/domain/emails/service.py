"""Email service - Business logic for sending and organizing message records"""

import logging
import math
import os
from email.utils import formataddr
from typing import Optional

from sqlalchemy.orm import Session

from ...errors import NotFoundError, ValidationError
from ...models import Attachment, Email, User, utcnow
from ...services.attachment_stager import AttachmentStager, UploadedPayload
from ...services.config_resolver import ConfigResolver
from ...services.dispatch import DispatchEngine, DispatchRequest, DispatchResult
from ...shared.validators import validate_recipients
from .repository import EmailRepository
from .schemas import (
    FOLDER_DRAFTS,
    FOLDER_SENT,
    FOLDERS,
    BulkEmailAction,
    ComposeRequest,
    EmailUpdate,
    Pagination,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

BULK_FLAG_UPDATES = {
    "markRead": {"is_read": True},
    "markUnread": {"is_read": False},
    "star": {"is_starred": True},
    "unstar": {"is_starred": False},
}


def normalize_folder(folder: str) -> str:
    folder = folder.strip().upper()
    if folder not in FOLDERS:
        raise ValidationError("Invalid folder")
    return folder


class EmailService:
    """Service layer for message records and the send pipeline"""

    def __init__(
        self,
        db: Session,
        resolver: ConfigResolver,
        stager: AttachmentStager,
        engine: DispatchEngine,
    ):
        self.db = db
        self.resolver = resolver
        self.stager = stager
        self.engine = engine
        self.repo = EmailRepository()

    def send_email(
        self, data: ComposeRequest, uploads: list[UploadedPayload], user: User
    ) -> tuple[Email, DispatchResult]:
        """
        Stage attachments, persist the message, then hand it to the relay.

        A relay failure does not raise: the record is moved to DRAFTS and
        annotated so nothing the user wrote (or uploaded) is lost.
        """
        subject = (data.subject or "").strip()
        try:
            to = validate_recipients(data.to, required=True)
            cc = validate_recipients(data.cc)
            bcc = validate_recipients(data.bcc)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not subject:
            raise ValidationError("To address and subject are required")

        html = data.bodyHtml or None
        text = data.bodyText or None
        if html is None and text is None:
            raise ValidationError("Email body is required")

        config = self.resolver.resolve(user, data.accountId)
        staged = self.stager.stage(uploads)

        try:
            email = self.repo.create_email(
                self.db,
                user.id,
                attachments=[
                    {
                        "filename": s.filename,
                        "content_type": s.content_type,
                        "file_size": s.size,
                        "file_path": s.path,
                    }
                    for s in staged
                ],
                smtp_account_id=config.account_id,
                from_address=formataddr((config.from_name or "", config.from_address)),
                to_addresses=",".join(to),
                cc_addresses=",".join(cc) or None,
                bcc_addresses=",".join(bcc) or None,
                subject=subject,
                body_html=html,
                body_text=text,
                folder=FOLDER_SENT,
                is_read=True,
                sent_at=utcnow(),
            )
        except Exception:
            self.db.rollback()
            released = self.stager.release_all(staged)
            logger.error(f"❌ Failed to save email for user {user.id}, released {released} staged file(s)")
            raise

        result = self.engine.send(
            DispatchRequest(
                config=config,
                to=to,
                cc=cc,
                bcc=bcc,
                subject=subject,
                html=html,
                text=text,
                attachments=staged,
            )
        )

        if result.success:
            self.repo.update_email(self.db, email, message_id=result.provider_message_id)
            logger.info(f"✅ Email {email.id} sent for user {user.id}")
        else:
            self.repo.update_email(
                self.db,
                email,
                folder=FOLDER_DRAFTS,
                error_kind=result.error_kind.value,
                body_text=f"[SMTP Error: {result.message}]\n\n{text or ''}",
                sent_at=None,
            )
            logger.warning(f"⚠️ Email {email.id} kept as draft after SMTP failure ({result.error_kind.value})")

        return email, result

    def list_emails(
        self, user: User, folder: str = FOLDER_SENT, page: int = 1, limit: int = 20, search: Optional[str] = None
    ) -> tuple[list[Email], Pagination]:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        emails, total = self.repo.get_emails(
            self.db, user.id, folder.upper(), search=search, offset=(page - 1) * limit, limit=limit
        )
        return emails, Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit))

    def get_email(self, email_id: int, user: User) -> Email:
        """Fetch a message and mark it read"""
        email = self.repo.get_email_by_id(self.db, email_id, user.id)
        if not email:
            raise NotFoundError("Email not found")
        if not email.is_read:
            email = self.repo.update_email(self.db, email, is_read=True)
        return email

    def delete_email(self, email_id: int, user: User) -> int:
        """Delete a message record and release its staged files. Returns the number of files removed."""
        email = self.repo.get_email_by_id(self.db, email_id, user.id)
        if not email:
            raise NotFoundError("Email not found")

        paths = [a.file_path for a in email.attachments]
        self.repo.delete_email(self.db, email)

        released = sum(1 for path in paths if self.stager.release_path(path))
        logger.info(f"🗑️ Email {email_id} deleted for user {user.id} ({released} file(s) released)")
        return released

    def update_email(self, email_id: int, data: EmailUpdate, user: User) -> Email:
        email = self.repo.get_email_by_id(self.db, email_id, user.id)
        if not email:
            raise NotFoundError("Email not found")

        updates = {}
        if data.isRead is not None:
            updates["is_read"] = data.isRead
        if data.isStarred is not None:
            updates["is_starred"] = data.isStarred
        if data.folder:
            updates["folder"] = normalize_folder(data.folder)

        if updates:
            email = self.repo.update_email(self.db, email, **updates)
            logger.info(f"✏️ Email {email_id} updated for user {user.id} ({', '.join(sorted(updates))})")
        return email

    def bulk_action(self, data: BulkEmailAction, user: User) -> int:
        """
        Apply one action to several messages at once. Either every id
        belongs to the user or nothing is touched. Returns the number of
        messages affected.
        """
        email_ids = list(dict.fromkeys(data.emailIds or []))
        if not email_ids or not data.action:
            raise ValidationError("Email IDs and action are required")

        emails = self.repo.get_emails_by_ids(self.db, email_ids, user.id)
        if len(emails) != len(email_ids):
            raise ValidationError("Some emails not found or access denied")

        if data.action == "delete":
            paths = [a.file_path for email in emails for a in email.attachments]
            self.repo.delete_emails(self.db, emails)
            released = sum(1 for path in paths if self.stager.release_path(path))
            logger.info(f"🗑️ {len(emails)} emails deleted for user {user.id} ({released} file(s) released)")
            return len(emails)

        if data.action == "move":
            if not data.folder:
                raise ValidationError("Folder is required for move action")
            updates = {"folder": normalize_folder(data.folder)}
        elif data.action in BULK_FLAG_UPDATES:
            updates = BULK_FLAG_UPDATES[data.action]
        else:
            raise ValidationError("Invalid action")

        count = self.repo.update_emails(self.db, email_ids, user.id, **updates)
        logger.info(f"✏️ {count} emails updated for user {user.id} ({data.action})")
        return count

    def get_attachment(self, email_id: int, attachment_id: int, user: User) -> Attachment:
        attachment = self.repo.get_attachment(self.db, email_id, attachment_id, user.id)
        if not attachment:
            raise NotFoundError("Attachment not found")
        if not os.path.exists(attachment.file_path):
            raise NotFoundError("File not found on server")
        return attachment
