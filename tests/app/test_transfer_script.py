from __future__ import annotations

from unittest.mock import patch

import pytest
from s3transfer.exceptions import RetriesExceededError

from objstore.common.config import Settings
from objstore.infra.storage import S3StorageClient
from scripts.transfer import run
from tests.infra.fake_s3 import FakeS3Client


@pytest.fixture
def fake_s3():
    fake = FakeS3Client()
    with patch.object(S3StorageClient, "_build_client", return_value=fake):
        yield fake


def test_push_pull_ls_rm(fake_s3, tmp_path, capsys):
    source = tmp_path / "dump.sql"
    source.write_bytes(b"select 1;")
    target = tmp_path / "restored.sql"
    settings = Settings(OBJSTORE_URL="s3://test-bucket/db")

    assert run(["push", str(source), "dump.sql"], settings=settings) == 0
    assert fake_s3.body("test-bucket", "db/dump.sql") == b"select 1;"

    assert run(["pull", "dump.sql", str(target)], settings=settings) == 0
    assert target.read_bytes() == b"select 1;"

    assert run(["ls", "db/"], settings=settings) == 0
    out = capsys.readouterr().out
    assert "Pushed 9 bytes to dump.sql" in out
    assert f"Pulled 9 bytes to {target}" in out
    assert "db/dump.sql" in out

    assert run(["rm", "db/dump.sql"], settings=settings) == 0
    assert fake_s3.buckets["test-bucket"] == {}


def test_url_flag_overrides_settings(fake_s3, capsys):
    fake_s3.put("test-bucket", "x/a", b"1")
    settings = Settings(OBJSTORE_URL="s3://other-bucket")

    assert run(["--url", "s3://test-bucket", "ls"], settings=settings) == 0
    assert "x/a" in capsys.readouterr().out


def test_storage_error_exit_code(fake_s3, tmp_path, capsys):
    settings = Settings(OBJSTORE_URL="s3://test-bucket/db")

    code = run(["pull", "missing.sql", str(tmp_path / "out.sql")], settings=settings)

    assert code == 1
    assert "error:" in capsys.readouterr().err



def test_exhausted_retries_exit_code(fake_s3, tmp_path, capsys):
    settings = Settings(OBJSTORE_URL="s3://test-bucket/db")
    fake_s3.put("test-bucket", "db/dump.sql", b"select 1;")

    with patch.object(
        FakeS3Client,
        "download_fileobj",
        side_effect=RetriesExceededError(ConnectionResetError("connection reset")),
    ):
        code = run(["pull", "dump.sql", str(tmp_path / "out.sql")], settings=settings)

    assert code == 1
    assert "Max Retries Exceeded" in capsys.readouterr().err
    assert not (tmp_path / "out.sql").exists()

def test_missing_url_is_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        run(["ls"], settings=Settings())
    assert excinfo.value.code == 2
