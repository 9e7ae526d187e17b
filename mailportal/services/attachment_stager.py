"""
Durable staging of uploaded attachments ahead of a send attempt.

Files land in ``<upload_dir>/<millisecond-timestamp>-<original-filename>``.
Every payload is checked against the size cap before anything is written.
"""

import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from ..config import Settings
from ..errors import ValidationError
from ..utils.sanitization import sanitize_filename

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_NAME_ATTEMPTS = 50


class UploadedPayload(BaseModel):
    """One uploaded file, already read into memory by the HTTP layer"""

    filename: str
    content_type: Optional[str] = None
    content: bytes


class StagedAttachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str  # original name, used in the outgoing message
    content_type: Optional[str] = None
    size: int
    path: str


class AttachmentStager:
    def __init__(self, upload_dir: str, max_file_size: int = DEFAULT_MAX_FILE_SIZE):
        self.root = Path(upload_dir)
        self.max_file_size = max_file_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "AttachmentStager":
        return cls(settings.upload_dir, settings.max_file_size)

    def check_size(self, filename: str, size: int) -> None:
        if size > self.max_file_size:
            raise ValidationError(
                f"Attachment '{filename}' exceeds the {self.max_file_size / (1024 * 1024):.0f}MB limit "
                f"({size / (1024 * 1024):.2f}MB)"
            )

    def stage(self, uploads: Iterable[UploadedPayload]) -> list[StagedAttachment]:
        uploads = list(uploads)
        if not uploads:
            return []

        # Reject the whole batch before touching the disk
        for upload in uploads:
            self.check_size(upload.filename, len(upload.content))

        self.root.mkdir(parents=True, exist_ok=True)

        staged: list[StagedAttachment] = []
        try:
            for upload in uploads:
                path = self._write_exclusive(upload)
                staged.append(
                    StagedAttachment(
                        filename=upload.filename,
                        content_type=upload.content_type,
                        size=len(upload.content),
                        path=str(path),
                    )
                )
        except OSError:
            logger.error(f"❌ Failed to stage attachments, removing {len(staged)} partial file(s)")
            self.release_all(staged)
            raise

        logger.info(f"📎 Staged {len(staged)} attachment(s) in {self.root}")
        return staged

    def _write_exclusive(self, upload: UploadedPayload) -> Path:
        safe_name = sanitize_filename(upload.filename)
        timestamp = int(time.time() * 1000)
        for _ in range(MAX_NAME_ATTEMPTS):
            path = self.root / f"{timestamp}-{safe_name}"
            try:
                with open(path, "xb") as fh:
                    fh.write(upload.content)
                    fh.flush()
                    os.fsync(fh.fileno())
                return path
            except FileExistsError:
                timestamp += 1
        raise FileExistsError(f"Could not find a free staging name for {safe_name}")

    def _is_inside_root(self, path: Path) -> bool:
        try:
            path.resolve().relative_to(self.root.resolve())
            return True
        except ValueError:
            return False

    def release_path(self, path: str) -> bool:
        """Delete a staged file. Missing files are not an error."""
        target = Path(path)
        if not self._is_inside_root(target):
            logger.warning(f"⚠️ Refusing to delete file outside upload dir: {path}")
            return False
        try:
            target.unlink()
            return True
        except FileNotFoundError:
            return False

    def release(self, attachment: StagedAttachment) -> bool:
        return self.release_path(attachment.path)

    def release_all(self, attachments: Iterable[StagedAttachment]) -> int:
        return sum(1 for attachment in attachments if self.release(attachment))
