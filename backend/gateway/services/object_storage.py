"""
AI Gateway — Object Storage Reader
===================================

What:  Materializes previously uploaded audio objects by reference.
How:   References are paths relative to STORAGE_ROOT. Reads use aiofiles so
       the event loop is never blocked on disk I/O.
Who:   OpenAIProvider, when a transcription request carries `storagePath`.

The read timeout is not applied here; the dispatcher wraps `read()` in
`asyncio.wait_for(..., settings.storage_read_timeout)`.

Error mapping:
    FileNotFoundError / IsADirectoryError  → StorageAccessError(not_found)
    PermissionError / path escapes root    → StorageAccessError(permission_denied)
    NUL byte in the reference              → ValidationError (400)
    object larger than `max_bytes`         → PayloadTooLargeError
"""

import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from gateway.config import settings
from gateway.exceptions import PayloadTooLargeError, StorageAccessError, ValidationError

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Read-only access to the object store rooted at `storage_root`."""

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()

    def resolve(self, reference: str) -> Path:
        """
        Map a storage reference onto an absolute path under the root.

        References that resolve outside the root are refused as permission
        errors so that `../` cannot reach arbitrary files. A reference with a
        NUL byte cannot name any file and is a client error.
        """
        if "\x00" in reference:
            raise ValidationError("Invalid storage path", field="storagePath")
        candidate = (self.storage_root / reference.lstrip("/")).resolve()
        if candidate != self.storage_root and self.storage_root not in candidate.parents:
            raise StorageAccessError(StorageAccessError.PERMISSION_DENIED, path=reference)
        return candidate

    async def read(self, reference: str, max_bytes: Optional[int] = None) -> bytes:
        """
        Return the full contents of the referenced object.

        When `max_bytes` is given, the object's size is checked from its
        metadata before any bytes are read.
        """
        path = self.resolve(reference)
        try:
            stat = await aiofiles.os.stat(path)
            if max_bytes is not None and stat.st_size > max_bytes:
                raise PayloadTooLargeError(size=stat.st_size, max_size=max_bytes)
            async with aiofiles.open(path, "rb") as f:
                content = await f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            logger.info("Storage object not found: %s", reference)
            raise StorageAccessError(StorageAccessError.NOT_FOUND, path=reference)
        except PermissionError:
            logger.warning("Storage permission denied: %s", reference)
            raise StorageAccessError(StorageAccessError.PERMISSION_DENIED, path=reference)

        logger.debug("Read storage object %s (%d bytes)", reference, len(content))
        return content


object_storage = ObjectStorage()
