"""Email router - FastAPI endpoints for sending and organizing messages"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...dependencies import get_attachment_stager, get_config_resolver, get_dispatch_engine
from ...models import User
from ...services.attachment_stager import AttachmentStager, UploadedPayload
from ...services.config_resolver import ConfigResolver
from ...services.dispatch import DispatchEngine
from .schemas import FOLDER_SENT, BulkEmailAction, ComposeRequest, EmailResponse, EmailUpdate
from .service import EmailService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emails", tags=["Emails"])


def get_email_service(
    db: Session = Depends(get_db),
    resolver: ConfigResolver = Depends(get_config_resolver),
    stager: AttachmentStager = Depends(get_attachment_stager),
    engine: DispatchEngine = Depends(get_dispatch_engine),
) -> EmailService:
    """Dependency injection for EmailService"""
    return EmailService(db, resolver, stager, engine)


def _read_uploads(files: list[UploadFile], stager: AttachmentStager) -> list[UploadedPayload]:
    """Read uploads into memory, refusing oversized files without reading them whole"""
    payloads = []
    for upload in files:
        filename = upload.filename or "attachment"
        if upload.size is not None:
            stager.check_size(filename, upload.size)
        content = upload.file.read(stager.max_file_size + 1)
        stager.check_size(filename, len(content))
        payloads.append(UploadedPayload(filename=filename, content_type=upload.content_type, content=content))
    return payloads


@router.post("/send", status_code=201)
def send_email(
    to: list[str] = Form(default=[]),
    cc: list[str] = Form(default=[]),
    bcc: list[str] = Form(default=[]),
    subject: Optional[str] = Form(default=None),
    bodyHtml: Optional[str] = Form(default=None),
    bodyText: Optional[str] = Form(default=None),
    accountId: Optional[int] = Form(default=None),
    attachments: list[UploadFile] = File(default=[]),
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
    stager: AttachmentStager = Depends(get_attachment_stager),
):
    """Send an email through the chosen (or default) SMTP account"""
    data = ComposeRequest(
        to=to, cc=cc, bcc=bcc, subject=subject, bodyHtml=bodyHtml, bodyText=bodyText, accountId=accountId
    )
    email, result = service.send_email(data, _read_uploads(attachments, stager), current_user)

    if not result.success:
        # The message is kept as a draft; report the relay failure without failing the record
        return JSONResponse(
            status_code=502,
            content={
                "success": False,
                "error": "Failed to send email via SMTP",
                "details": result.message,
                "errorKind": result.error_kind.value,
                "emailId": email.id,
            },
        )

    return {
        "success": True,
        "message": "Email sent successfully",
        "emailId": email.id,
        "messageId": result.provider_message_id,
        "rejectedRecipients": result.rejected_recipients,
    }


@router.post("/bulk")
def bulk_action(
    data: BulkEmailAction,
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    """Mark, star, move or delete several messages at once"""
    count = service.bulk_action(data, current_user)
    verb = "deleted" if data.action == "delete" else "updated"
    return {"success": True, "message": f"{count} emails {verb} successfully", "count": count}


@router.get("")
def list_emails(
    folder: str = Query(FOLDER_SENT),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    search: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    emails, pagination = service.list_emails(current_user, folder, page, limit, search)
    return {
        "success": True,
        "emails": [EmailResponse.from_email(e) for e in emails],
        "pagination": pagination,
    }


@router.get("/{email_id}")
def get_email(
    email_id: int,
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    email = service.get_email(email_id, current_user)
    return {"success": True, "email": EmailResponse.from_email(email)}


@router.put("/{email_id}")
def update_email(
    email_id: int,
    data: EmailUpdate,
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    email = service.update_email(email_id, data, current_user)
    return {"success": True, "message": "Email updated successfully", "email": EmailResponse.from_email(email)}


@router.delete("/{email_id}")
def delete_email(
    email_id: int,
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    service.delete_email(email_id, current_user)
    return {"success": True, "message": "Email deleted successfully"}


@router.get("/{email_id}/attachments/{attachment_id}")
def download_attachment(
    email_id: int,
    attachment_id: int,
    current_user: User = Depends(get_current_user),
    service: EmailService = Depends(get_email_service),
):
    attachment = service.get_attachment(email_id, attachment_id, current_user)
    return FileResponse(
        attachment.file_path,
        media_type=attachment.content_type or "application/octet-stream",
        filename=attachment.filename,
    )
