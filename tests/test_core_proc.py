import sys

import pytest

from core.proc import EXIT_NOT_FOUND, run_command

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses /bin/sh")


@posix_only
def test_exit_status_is_returned() -> None:
    assert run_command(["/bin/sh", "-c", "echo out; echo err >&2; exit 3"]) == 3


@posix_only
def test_stdout_goes_to_file(tmp_path) -> None:
    target = tmp_path / "out.txt"
    with target.open("wb") as handle:
        status = run_command(["/bin/sh", "-c", "echo hello; echo noise >&2"], stdout=handle, discard_stderr=True)
    assert status == 0
    assert target.read_text(encoding="utf-8") == "hello\n"


def test_missing_program(tmp_path) -> None:
    assert run_command([str(tmp_path / "does-not-exist")]) == EXIT_NOT_FOUND
