"""Email repository - Database operations for message records"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from ...models import Attachment, Email


class EmailRepository:
    """Repository for message record database operations"""

    @staticmethod
    def get_emails(
        db: Session,
        user_id: int,
        folder: str,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Email], int]:
        """One page of a folder plus the folder's total count"""
        query = db.query(Email).filter(Email.user_id == user_id, Email.folder == folder)

        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Email.subject.ilike(pattern),
                    Email.from_address.ilike(pattern),
                    Email.body_text.ilike(pattern),
                )
            )

        total = query.count()
        emails = (
            query.options(selectinload(Email.attachments))
            .order_by(Email.created_at.desc(), Email.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return emails, total

    @staticmethod
    def get_email_by_id(db: Session, email_id: int, user_id: int) -> Optional[Email]:
        return (
            db.query(Email)
            .options(selectinload(Email.attachments))
            .filter(Email.id == email_id, Email.user_id == user_id)
            .first()
        )

    @staticmethod
    def create_email(db: Session, user_id: int, attachments: list[dict], **email_data) -> Email:
        """Create a message record together with its attachment rows"""
        email = Email(user_id=user_id, **email_data)
        email.attachments = [Attachment(**attachment) for attachment in attachments]
        db.add(email)
        db.commit()
        db.refresh(email)
        return email

    @staticmethod
    def update_email(db: Session, email: Email, **updates) -> Email:
        for key, value in updates.items():
            if hasattr(email, key):
                setattr(email, key, value)
        db.commit()
        db.refresh(email)
        return email

    @staticmethod
    def delete_email(db: Session, email: Email) -> None:
        db.delete(email)
        db.commit()

    @staticmethod
    def get_emails_by_ids(db: Session, email_ids: list[int], user_id: int) -> list[Email]:
        """Only the user's own messages among ``email_ids``"""
        return (
            db.query(Email)
            .options(selectinload(Email.attachments))
            .filter(Email.id.in_(email_ids), Email.user_id == user_id)
            .all()
        )

    @staticmethod
    def update_emails(db: Session, email_ids: list[int], user_id: int, **updates) -> int:
        count = (
            db.query(Email)
            .filter(Email.id.in_(email_ids), Email.user_id == user_id)
            .update(updates, synchronize_session="fetch")
        )
        db.commit()
        return count

    @staticmethod
    def delete_emails(db: Session, emails: list[Email]) -> None:
        # Through the session so attachment rows cascade
        for email in emails:
            db.delete(email)
        db.commit()

    @staticmethod
    def get_attachment(db: Session, email_id: int, attachment_id: int, user_id: int) -> Optional[Attachment]:
        return (
            db.query(Attachment)
            .join(Email, Attachment.email_id == Email.id)
            .filter(Attachment.id == attachment_id, Email.id == email_id, Email.user_id == user_id)
            .first()
        )
