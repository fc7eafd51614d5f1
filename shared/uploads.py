"""
Uploaded Files

Value object for files handed to the batch orchestrator and the spreadsheet
reconciliation engine. Transport (HTTP, CLI) is handled by the caller.
"""

import mimetypes
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class UploadedFile:
    """One uploaded file: original name, raw bytes and declared content type."""

    filename: str
    content: bytes
    content_type: str | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> "UploadedFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(filename=path.name, content=path.read_bytes(), content_type=content_type)

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()

    def is_zip(self) -> bool:
        return self.content_type in ("application/zip", "application/x-zip-compressed") or self.suffix == ".zip"

    def is_xml(self) -> bool:
        return self.content_type in ("text/xml", "application/xml") or self.suffix == ".xml"
