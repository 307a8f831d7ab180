"""Uploaded documents and the storage contract."""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


@dataclass(frozen=True)
class UploadedDocument:
    """A file received from a caller."""

    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        if "." not in self.filename:
            return ""
        return self.filename.rsplit(".", 1)[1].lower()


class DocumentUploader(Protocol):
    async def upload(
        self, scope: str, entity_id: str, files: Sequence[UploadedDocument]
    ) -> list[str]:
        """Store files and return their URLs in input order; raises UploadFailed."""
        ...

    async def discard(self, urls: Sequence[str]) -> None:
        """Remove previously stored files; unknown URLs are ignored."""
        ...
