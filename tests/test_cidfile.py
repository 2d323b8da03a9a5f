"""Tests for the container ID file."""

import pytest

from dockcli.cidfile import CIDFile
from dockcli.exceptions import CIDFileError


@pytest.mark.asyncio
class TestCIDFile:
    async def test_empty_path_is_a_no_op(self):
        async with CIDFile("") as cid:
            await cid.write("abc")
        assert not cid.written

    async def test_existing_path_fails(self, tmp_path):
        path = tmp_path / "cid"
        path.write_text("other")

        with pytest.raises(CIDFileError) as exc_info:
            async with CIDFile(str(path)):
                pass

        assert str(exc_info.value) == (
            "container ID file found, make sure the other container isn't running "
            f"or delete {path}"
        )
        assert path.read_text() == "other"

    async def test_written_file_is_retained(self, tmp_path):
        path = tmp_path / "cid"
        async with CIDFile(str(path)) as cid:
            assert path.exists()
            await cid.write("abc123")
        assert path.read_text() == "abc123"

    async def test_unwritten_file_is_removed(self, tmp_path):
        path = tmp_path / "cid"
        async with CIDFile(str(path)):
            assert path.exists()
        assert not path.exists()

    async def test_removed_when_body_raises(self, tmp_path):
        path = tmp_path / "cid"
        with pytest.raises(RuntimeError):
            async with CIDFile(str(path)):
                raise RuntimeError("create failed")
        assert not path.exists()

    async def test_written_once(self, tmp_path):
        path = tmp_path / "cid"
        async with CIDFile(str(path)) as cid:
            await cid.write("abc")
            with pytest.raises(CIDFileError):
                await cid.write("def")
        assert path.read_text() == "abc"

    async def test_missing_directory(self, tmp_path):
        with pytest.raises(CIDFileError, match="failed to create the container ID file"):
            async with CIDFile(str(tmp_path / "missing" / "cid")):
                pass
