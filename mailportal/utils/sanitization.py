import re
from typing import Optional

MAX_FILENAME_LENGTH = 200
DEFAULT_FILENAME = "attachment"

# Path separators and characters that are unsafe on common filesystems
_DANGEROUS_FILENAME_CHARS = re.compile(r'[<>:"|?*\x00-\x1F\x7F]')


def sanitize_filename(filename: Optional[str]) -> str:
    """
    Reduce an uploaded filename to a safe basename for local storage.

    Directory components are dropped, control and reserved characters are
    replaced with underscores, and the result is capped in length while
    keeping the extension.
    """
    if not filename:
        return DEFAULT_FILENAME

    name = re.split(r"[\\/]", str(filename))[-1]
    name = _DANGEROUS_FILENAME_CHARS.sub("_", name).strip().strip(".")

    if not name:
        return DEFAULT_FILENAME

    if len(name) > MAX_FILENAME_LENGTH:
        stem, dot, ext = name.rpartition(".")
        if dot and 0 < len(ext) <= 16:
            name = stem[: MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_FILENAME_LENGTH]

    return name


def sanitize_header_value(value: Optional[str]) -> str:
    """Strip CR/LF so user text cannot inject extra mail headers"""
    if not value:
        return ""
    return re.sub(r"[\r\n]+", " ", str(value)).strip()
