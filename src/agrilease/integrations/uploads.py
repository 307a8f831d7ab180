"""Document storage for lease attachments."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, Sequence
from uuid import uuid4

from agrilease.config import settings
from agrilease.engine.errors import UploadFailed
from agrilease.models.document import UploadedDocument
from agrilease.utils.time import utc_now

logger = logging.getLogger(__name__)

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9_.-]")


class LocalDocumentUploader:
    """
    Stores documents on local disk under <root>/<scope>/<entity>/<yyyy/mm/dd>/.

    Files get random names so uploads never overwrite each other.
    """

    def __init__(
        self,
        root: Optional[str] = None,
        base_url: Optional[str] = None,
        allowed_extensions: Optional[Sequence[str]] = None,
        max_bytes: Optional[int] = None,
    ):
        self.root = Path(root or settings.upload_dir)
        self.base_url = (base_url if base_url is not None else settings.upload_base_url).rstrip("/")
        self.allowed_extensions = {
            e.lower() for e in (allowed_extensions or settings.upload_allowed_extensions)
        }
        self.max_bytes = max_bytes or settings.upload_max_bytes

    async def upload(
        self, scope: str, entity_id: str, files: Sequence[UploadedDocument]
    ) -> list[str]:
        for document in files:
            self._check(document)

        dated_folder = utc_now().strftime("%Y/%m/%d")
        relative_dir = Path(_segment(scope)) / _segment(entity_id) / dated_folder
        urls = []
        for document in files:
            name = f"{uuid4().hex}.{document.extension}"
            target = self.root / relative_dir / name
            try:
                await asyncio.to_thread(_write, target, document.content)
            except OSError as e:
                raise UploadFailed(f"Could not store {document.filename}: {e}") from e
            urls.append(f"{self.base_url}/{relative_dir.as_posix()}/{name}")

        logger.info(f"Stored {len(urls)} document(s) for {scope}/{entity_id}")
        return urls

    async def discard(self, urls: Sequence[str]) -> None:
        prefix = f"{self.base_url}/"
        root = self.root.resolve()
        for url in urls:
            if not url.startswith(prefix):
                logger.warning(f"Not a stored document URL: {url}")
                continue
            target = (self.root / url[len(prefix):]).resolve()
            if not target.is_relative_to(root):
                logger.warning(f"Refusing to discard outside the upload root: {url}")
                continue
            await asyncio.to_thread(target.unlink, missing_ok=True)
        logger.info(f"Discarded {len(urls)} document(s)")

    def _check(self, document: UploadedDocument) -> None:
        if not document.filename or document.extension not in self.allowed_extensions:
            raise UploadFailed(f"Unsupported document type: {document.filename!r}")
        if not document.content:
            raise UploadFailed(f"Empty document: {document.filename!r}")
        if len(document.content) > self.max_bytes:
            raise UploadFailed(f"Document too large: {document.filename!r}")


def _segment(value: str) -> str:
    return _SAFE_SEGMENT.sub("_", value) or "_"


def _write(target: Path, content: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)


_uploader: Optional[LocalDocumentUploader] = None


def get_document_uploader() -> LocalDocumentUploader:
    """Get or create the document uploader singleton."""
    global _uploader
    if _uploader is None:
        _uploader = LocalDocumentUploader()
    return _uploader
