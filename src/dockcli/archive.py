"""Tar archives sent to the engine."""

import asyncio
import io
import tarfile
from pathlib import Path


def _tar_directory(directory: Path, compress: bool) -> bytes:
    buffer = io.BytesIO()
    mode = "w:gz" if compress else "w"
    with tarfile.open(fileobj=buffer, mode=mode) as tar:
        for path in sorted(directory.rglob("*")):
            tar.add(str(path), arcname=str(path.relative_to(directory)), recursive=False)
    return buffer.getvalue()


async def tar_directory(directory: Path, compress: bool = False) -> bytes:
    """Archive the contents of a directory (paths relative to it).

    Args:
        directory: Directory to archive
        compress: Gzip the archive

    Returns:
        The archive bytes
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, _tar_directory, directory, compress)


def single_file_tar(path: str, content: bytes, mode: int = 0o600) -> bytes:
    """Build an uncompressed archive holding one regular file."""
    buffer = io.BytesIO()
    info = tarfile.TarInfo(name=path)
    info.size = len(content)
    info.mode = mode
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()
