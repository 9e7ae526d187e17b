"""Email domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

FOLDER_SENT = "SENT"
FOLDER_DRAFTS = "DRAFTS"
FOLDERS = ("INBOX", FOLDER_SENT, FOLDER_DRAFTS, "TRASH", "SPAM")


class ComposeRequest(BaseModel):
    """Fields of the multipart send form"""

    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: Optional[str] = None
    bodyHtml: Optional[str] = None
    bodyText: Optional[str] = None
    accountId: Optional[int] = None


class EmailUpdate(BaseModel):
    """Flags and folder of a stored message; omitted fields stay as they are"""

    isRead: Optional[bool] = None
    isStarred: Optional[bool] = None
    folder: Optional[str] = None


class BulkEmailAction(BaseModel):
    emailIds: Optional[list[int]] = None
    action: Optional[str] = None  # markRead, markUnread, star, unstar, move, delete
    folder: Optional[str] = None


class AttachmentResponse(BaseModel):
    id: int
    filename: str
    contentType: Optional[str] = None
    fileSize: int


class EmailResponse(BaseModel):
    id: int
    accountId: Optional[int] = None
    fromAddress: str
    to: list[str]
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str
    bodyHtml: Optional[str] = None
    bodyText: Optional[str] = None
    folder: str
    isRead: bool
    isStarred: bool = False
    messageId: Optional[str] = None
    errorKind: Optional[str] = None
    sentAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    attachments: list[AttachmentResponse] = Field(default_factory=list)

    @classmethod
    def from_email(cls, email) -> "EmailResponse":
        def _split(value):
            return [v for v in (value or "").split(",") if v]

        return cls(
            id=email.id,
            accountId=email.smtp_account_id,
            fromAddress=email.from_address,
            to=_split(email.to_addresses),
            cc=_split(email.cc_addresses),
            bcc=_split(email.bcc_addresses),
            subject=email.subject,
            bodyHtml=email.body_html,
            bodyText=email.body_text,
            folder=email.folder,
            isRead=email.is_read,
            isStarred=bool(email.is_starred),
            messageId=email.message_id,
            errorKind=email.error_kind,
            sentAt=email.sent_at,
            createdAt=email.created_at,
            attachments=[
                AttachmentResponse(
                    id=a.id, filename=a.filename, contentType=a.content_type, fileSize=a.file_size
                )
                for a in email.attachments
            ],
        )


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
