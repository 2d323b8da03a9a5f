"""Container ID file written after a successful create."""

import logging
import os
from typing import Optional

import aiofiles

from .exceptions import CIDFileError

logger = logging.getLogger(__name__)


class CIDFile:
    """Exclusively created file holding the ID of the created container.

    Use as an async context manager. The file is created on entry (an
    existing path is an error) and removed on exit unless an ID was written.
    An empty path disables the file entirely.

    Example:
        async with CIDFile(path) as cid:
            response = await client.container_create(...)
            await cid.write(response.id)
    """

    def __init__(self, path: str = "") -> None:
        self.path = path
        self.written = False
        self._file = None

    async def open(self) -> None:
        """Create the file.

        Raises:
            CIDFileError: If the path already exists or cannot be created
        """
        if not self.path:
            return
        if os.path.exists(self.path):
            raise CIDFileError(
                "container ID file found, make sure the other container "
                f"isn't running or delete {self.path}"
            )
        try:
            self._file = await aiofiles.open(self.path, "x", encoding="utf-8")
        except FileExistsError as e:
            raise CIDFileError(
                "container ID file found, make sure the other container "
                f"isn't running or delete {self.path}"
            ) from e
        except OSError as e:
            raise CIDFileError(f"failed to create the container ID file: {e}") from e

    async def write(self, container_id: str) -> None:
        if self._file is None:
            return
        if self.written:
            raise CIDFileError("container ID file already written")
        try:
            await self._file.write(container_id)
            await self._file.flush()
        except OSError as e:
            raise CIDFileError(f"failed to write the container ID to the file: {e}") from e
        self.written = True

    async def close(self) -> None:
        """Close the file, removing it when nothing was written.

        Raises:
            CIDFileError: If the unwritten file cannot be removed
        """
        if self._file is None:
            return
        await self._file.close()
        self._file = None
        if self.written:
            return
        logger.debug("removing unwritten container ID file %s", self.path)
        try:
            os.remove(self.path)
        except OSError as e:
            raise CIDFileError(f"failed to remove the CID file '{self.path}': {e}") from e

    async def __aenter__(self) -> "CIDFile":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Optional[bool]:
        try:
            await self.close()
        except CIDFileError:
            if exc_type is None:
                raise
            logger.warning("cleanup of %s failed after an earlier error", self.path)
        return None
