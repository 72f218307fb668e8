"""Create database backups with the operator script or the built-in dump."""
from __future__ import annotations

import logging
import shlex
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from core.db import DatabaseParams
from core import proc

from .credentials import release_credentials, stage_credentials, staged_credentials
from .errors import CredentialStagingError, ExternalProcessError
from .logs import BackupLogger
from .types import AttemptResult, BackupStage, BackupTarget

LOGGER = logging.getLogger("storekeeper.backup.create")

DUMP_EXTENSION = ".sql"
COMPRESSED_EXTENSION = ".gz"
DEFAULT_ROTATE = "rotate=-1"

_DUMP_OPTIONS = (
    "--add-drop-table",
    "--add-locks",
    "--allow-keywords",
    "--complete-insert",
    "--extended-insert",
    "--lock-tables",
    "--no-create-db",
    "--quick",
)


def create_backup_filename(prefix: str, extension: str, *, now: Optional[datetime] = None) -> str:
    """Return ``<prefix>-<YYYYmmddHHMMSS><extension>``."""

    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M%S")
    return f"{prefix}-{stamp}{extension}"


def backup_prefix(params: DatabaseParams, schema_version: str) -> str:
    return f"{params.name}-{schema_version}"


def rotate_directive(script_args: str) -> str:
    """Default ``rotate=-1`` unless the operator already mentions rotation."""

    if script_args and "rotate" in script_args.lower():
        return ""
    return DEFAULT_ROTATE


def script_credentials(
    params: DatabaseParams,
    schema_version: str,
    target: BackupTarget,
    *,
    extra: str = "",
) -> str:
    lines = [
        f"DBHostName={params.host}",
        f"DBPort={params.port}",
        f"DBUserName={params.user}",
        f"DBPassword={params.password}",
        f"DBName={params.name}",
        f"DBSchemaVer={schema_version}",
        f"DBBackupDirectory={target.directory}",
        f"DBBackupFilename={target.filename}",
        extra,
    ]
    return "\n".join(lines) + "\n"


def dump_credentials(params: DatabaseParams) -> str:
    """Option-file sections read by the dump utility via ``--defaults-extra-file``."""

    return f"[client]\npassword={params.password}\n[mysqldump]\npassword={params.password}\n"


def find_script_artifact(target: BackupTarget, *, logger: BackupLogger) -> str:
    """Locate the file the backup script produced for ``target``.

    Returns an empty string when no file starts with the suggested name; when
    several do, the first in name order is used.
    """

    try:
        matches = sorted(
            entry.name
            for entry in target.directory.iterdir()
            if entry.is_file() and entry.name.startswith(target.filename)
        )
    except OSError as exc:
        logger.warning("artifact_scan_failed", directory=str(target.directory), error=str(exc))
        return ""
    if not matches:
        logger.warning(
            "artifact_not_found",
            directory=str(target.directory),
            prefix=target.filename,
        )
        return ""
    if len(matches) > 1:
        logger.warning(
            "artifact_ambiguous",
            directory=str(target.directory),
            prefix=target.filename,
            candidates=len(matches),
            chosen=matches[0],
        )
    return str(target.directory / matches[0])


def run_backup_script(
    script: Path,
    params: DatabaseParams,
    schema_version: str,
    target: BackupTarget,
    *,
    logger: BackupLogger,
    script_args: str = "",
) -> AttemptResult:
    """Run the operator backup script with a staged ``key=value`` credential file.

    A staging failure is logged and the script still runs, without the file
    argument.
    """

    try:
        operator_args = shlex.split(script_args or "")
    except ValueError as exc:
        logger.event(event="script_args_invalid", phase=BackupStage.SCRIPT_ATTEMPT, ok=False, error=str(exc))
        return AttemptResult.failed()

    content = script_credentials(
        params,
        schema_version,
        target,
        extra=rotate_directive(script_args),
    )
    staged: Optional[Path] = None
    try:
        staged = stage_credentials(content)
    except CredentialStagingError as exc:
        logger.error("credentials_unavailable", phase=BackupStage.SCRIPT_ATTEMPT, error=str(exc))
        LOGGER.warning("Attempting backup anyway.")

    cmd: List[str] = [str(script), *operator_args]
    if staged is not None:
        cmd.append(str(staged))
    logger.info("script_start", script=str(script), args=len(cmd) - 1)
    try:
        status = proc.run_command(cmd, log_output=False)
    finally:
        release_credentials(staged)

    if status != 0:
        error = ExternalProcessError(script.name, status)
        logger.event(
            event="script_failed",
            phase=BackupStage.SCRIPT_ATTEMPT,
            ok=False,
            status=status,
            error=str(error),
        )
        return AttemptResult.failed()

    artifact = find_script_artifact(target, logger=logger)
    logger.event(event="script_complete", phase=BackupStage.SCRIPT_ATTEMPT, ok=True, artifact=artifact)
    return AttemptResult(ok=True, artifact=artifact)


def find_compressor(candidates: Sequence[str]) -> Optional[str]:
    for candidate in candidates:
        if candidate and Path(candidate).is_file():
            return str(candidate)
    return None


def dump_command(program: str, extra_file: Path, params: DatabaseParams) -> List[str]:
    cmd = [
        program,
        f"--defaults-extra-file={extra_file}",
        f"--host={params.host}",
    ]
    if params.port > 0:
        cmd.append(f"--port={params.port}")
    cmd.append(f"--user={params.user}")
    cmd.extend(_DUMP_OPTIONS)
    cmd.append(params.name)
    return cmd


def _remove_partial(path: Path, *, logger: BackupLogger) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("partial_dump_left", path=str(path), error=str(exc))


def run_internal_backup(
    params: DatabaseParams,
    target: BackupTarget,
    *,
    logger: BackupLogger,
    program: str = "mysqldump",
    compressors: Sequence[str] = ("/bin/gzip", "/usr/bin/gzip"),
) -> AttemptResult:
    """Dump the store with ``program`` and gzip the result when possible.

    The dump utility failing (or credentials that cannot be staged) fails the
    attempt. A missing or failing compressor only leaves the dump
    uncompressed.
    """

    compressor = find_compressor(compressors)
    if compressor is None:
        logger.warning("compressor_missing", candidates=list(compressors))

    dump_path = target.path
    try:
        target.directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.event(event="dump_failed", phase=BackupStage.INTERNAL_ATTEMPT, ok=False, error=str(exc))
        return AttemptResult.failed()

    try:
        with staged_credentials(dump_credentials(params)) as extra_file:
            cmd = dump_command(program, extra_file, params)
            logger.info("dump_start", program=program, path=str(dump_path))
            with dump_path.open("wb") as handle:
                status = proc.run_command(cmd, stdout=handle, discard_stderr=True)
    except CredentialStagingError as exc:
        logger.event(event="dump_failed", phase=BackupStage.INTERNAL_ATTEMPT, ok=False, error=str(exc))
        return AttemptResult.failed()
    except OSError as exc:
        logger.event(event="dump_failed", phase=BackupStage.INTERNAL_ATTEMPT, ok=False, error=str(exc))
        _remove_partial(dump_path, logger=logger)
        return AttemptResult.failed()

    if status != 0:
        error = ExternalProcessError(Path(program).name, status)
        logger.event(
            event="dump_failed",
            phase=BackupStage.INTERNAL_ATTEMPT,
            ok=False,
            status=status,
            error=str(error),
        )
        _remove_partial(dump_path, logger=logger)
        return AttemptResult.failed()

    artifact = str(dump_path)
    degraded = compressor is None
    if compressor is not None:
        logger.info("compress_start", program=compressor, path=artifact)
        compress_status = proc.run_command([compressor, artifact])
        if compress_status != 0:
            degraded = True
            logger.warning("compress_failed", status=compress_status, path=artifact)
        else:
            artifact += COMPRESSED_EXTENSION

    logger.event(
        event="dump_complete",
        phase=BackupStage.INTERNAL_ATTEMPT,
        ok=True,
        artifact=artifact,
        compressed=not degraded,
    )
    return AttemptResult(ok=True, artifact=artifact, degraded=degraded)


__all__ = [
    "backup_prefix",
    "create_backup_filename",
    "dump_command",
    "dump_credentials",
    "find_compressor",
    "find_script_artifact",
    "rotate_directive",
    "run_backup_script",
    "run_internal_backup",
    "script_credentials",
]
