# documents/storage.py
"""
Local file storage for uploads: UPLOAD_FOLDER/{tenant_id}/{uuid}{ext}
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

from config import UPLOAD_FOLDER

logger = logging.getLogger(__name__)


class DocumentStorage:

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or UPLOAD_FOLDER)

    def save(self, tenant_id: int, filename: str, content: bytes) -> str:
        """Writes the content and returns its path relative to the storage root."""
        folder = self.root / str(tenant_id)
        folder.mkdir(parents=True, exist_ok=True)

        relative = Path(str(tenant_id)) / f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        (self.root / relative).write_bytes(content)
        logger.info(f"[Storage] Saved {filename} ({len(content)} bytes) as {relative}")
        return relative.as_posix()

    def read(self, storage_path: str) -> bytes:
        return (self.root / storage_path).read_bytes()

    def delete(self, storage_path: str) -> None:
        path = self.root / storage_path
        if path.exists():
            path.unlink()
            logger.info(f"[Storage] Deleted {storage_path}")
        else:
            logger.warning(f"[Storage] Nothing to delete at {storage_path}")
