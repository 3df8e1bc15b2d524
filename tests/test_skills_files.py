"""Tests for the sandboxed read_file / write_file skills."""

import os

import pytest

from aide.skills import (
    ExecutionFailedError,
    ForbiddenError,
    InvalidInputError,
    PermissionLevel,
    ReadFileSkill,
    SkillContext,
    WriteFileSkill,
)
from aide.skills.files import PathSandbox

CTX = SkillContext(conversation_id="c1")


@pytest.fixture
def sandbox(tmp_path):
    root = tmp_path / "sandbox"
    root.mkdir()
    return root


class TestPathSandbox:
    def test_inside(self, sandbox):
        assert PathSandbox([str(sandbox)]).normalize(f"{sandbox}/a/b.txt") == sandbox / "a" / "b.txt"

    def test_dotdot_escape_forbidden(self, sandbox):
        with pytest.raises(ForbiddenError):
            PathSandbox([str(sandbox)]).normalize(f"{sandbox}/../etc/passwd")

    def test_sibling_prefix_forbidden(self, sandbox, tmp_path):
        """/x/sandbox-other is not inside /x/sandbox."""
        with pytest.raises(ForbiddenError):
            PathSandbox([str(sandbox)]).normalize(str(tmp_path / "sandbox-other" / "f"))

    def test_relative_path_uses_first_root(self, sandbox):
        assert PathSandbox([str(sandbox)]).normalize("notes/a.txt") == sandbox / "notes" / "a.txt"

    def test_empty_allow_list(self):
        with pytest.raises(ForbiddenError):
            PathSandbox([]).normalize("/tmp/x")

    def test_empty_path(self, sandbox):
        with pytest.raises(InvalidInputError):
            PathSandbox([str(sandbox)]).normalize("  ")


class TestWriteFile:
    def test_is_mutating(self):
        assert WriteFileSkill([]).permission_level == PermissionLevel.MUTATING

    @pytest.mark.asyncio
    async def test_write_reports_bytes(self, sandbox):
        skill = WriteFileSkill([str(sandbox)])
        result = await skill.execute({"path": f"{sandbox}/note.txt", "content": "hello"}, CTX)
        assert result == {"bytes_written": 5}
        assert (sandbox / "note.txt").read_text() == "hello"

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, sandbox):
        skill = WriteFileSkill([str(sandbox)])
        await skill.execute({"path": f"{sandbox}/deep/er/x.txt", "content": "é"}, CTX)
        assert (sandbox / "deep" / "er" / "x.txt").read_bytes() == "é".encode()

    @pytest.mark.asyncio
    async def test_escape_forbidden(self, sandbox, tmp_path):
        skill = WriteFileSkill([str(sandbox)])
        with pytest.raises(ForbiddenError):
            await skill.execute({"path": f"{sandbox}/../escape.txt", "content": "x"}, CTX)
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.asyncio
    async def test_symlink_escape_forbidden(self, sandbox, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(outside, sandbox / "link")

        skill = WriteFileSkill([str(sandbox)])
        with pytest.raises(ForbiddenError):
            await skill.execute({"path": f"{sandbox}/link/x.txt", "content": "x"}, CTX)
        assert not (outside / "x.txt").exists()

    @pytest.mark.asyncio
    async def test_missing_content(self, sandbox):
        with pytest.raises(InvalidInputError):
            await WriteFileSkill([str(sandbox)]).execute({"path": f"{sandbox}/a"}, CTX)


class TestReadFile:
    @pytest.mark.asyncio
    async def test_read(self, sandbox):
        (sandbox / "a.txt").write_text("contents")
        result = await ReadFileSkill([str(sandbox)]).execute({"path": f"{sandbox}/a.txt"}, CTX)
        assert result == {"content": "contents"}

    @pytest.mark.asyncio
    async def test_missing_file(self, sandbox):
        with pytest.raises(ExecutionFailedError, match="not found"):
            await ReadFileSkill([str(sandbox)]).execute({"path": f"{sandbox}/nope.txt"}, CTX)

    @pytest.mark.asyncio
    async def test_symlinked_file_outside(self, sandbox, tmp_path):
        secret = tmp_path / "secret.txt"
        secret.write_text("s3cret")
        os.symlink(secret, sandbox / "innocent.txt")
        with pytest.raises(ForbiddenError):
            await ReadFileSkill([str(sandbox)]).execute({"path": f"{sandbox}/innocent.txt"}, CTX)

    @pytest.mark.asyncio
    async def test_path_must_be_string(self, sandbox):
        with pytest.raises(InvalidInputError):
            await ReadFileSkill([str(sandbox)]).execute({"path": 3}, CTX)

    def test_error_string_has_kind(self):
        assert str(ForbiddenError("nope")) == "forbidden: nope"
