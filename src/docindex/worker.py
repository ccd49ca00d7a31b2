from __future__ import annotations

import json
import subprocess
import sys
from time import sleep
from typing import Any, Callable

from sqlalchemy import text
from sqlalchemy.engine import Engine

from docindex.config import get_settings
from docindex.db import get_engine
from docindex.models import INDEX_SYNC_JOB
from docindex.services.index.errors import RETRYABLE_EXIT_CODES


class JobRunError(RuntimeError):
    def __init__(self, message: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


def _normalize_payload(payload_json: Any) -> dict[str, Any] | None:
    if isinstance(payload_json, dict):
        return payload_json
    if isinstance(payload_json, str) and payload_json.strip():
        try:
            parsed = json.loads(payload_json)
        except json.JSONDecodeError:
            return None
        if isinstance(parsed, dict):
            return parsed
    return None


def _coerce_job_id(job_id: Any) -> int | str:
    if isinstance(job_id, bool):
        return str(job_id)
    if isinstance(job_id, int):
        return job_id
    if isinstance(job_id, str):
        normalized = job_id.strip()
        if normalized.isdigit():
            return int(normalized)
        return normalized
    return str(job_id)


def claim_next_sync_job(engine: Engine) -> dict[str, Any] | None:
    with engine.begin() as connection:
        row = connection.execute(
            text(
                """
                SELECT id, payload_json, attempts, max_attempts
                FROM jobs
                WHERE type = :job_type AND status = 'queued'
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                """
            ),
            {"job_type": INDEX_SYNC_JOB},
        ).mappings().first()
        if row is None:
            return None

        # the status guard makes the claim a no-op if another worker got there first
        claimed = connection.execute(
            text(
                """
                UPDATE jobs
                SET status = 'running',
                    started_at = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP,
                    finished_at = NULL,
                    error = NULL
                WHERE CAST(id AS TEXT) = CAST(:job_id AS TEXT) AND status = 'queued'
                """
            ),
            {"job_id": _coerce_job_id(row["id"])},
        )
        if claimed.rowcount != 1:
            return None

        return {
            "id": _coerce_job_id(row["id"]),
            "payload_json": _normalize_payload(row["payload_json"]),
            "attempts": int(row["attempts"] or 0),
            "max_attempts": int(row["max_attempts"] or get_settings().job_max_attempts),
        }


def run_sync_subprocess(payload_json: dict[str, Any] | None = None) -> dict[str, Any]:
    command = [sys.executable, "-m", "docindex.services.index.sync_job_runner"]
    if payload_json is not None:
        command.extend(["--payload-json", json.dumps(payload_json)])
    completed = subprocess.run(
        command,
        capture_output=True,
        text=True,
        check=False,
    )
    if completed.returncode != 0:
        stderr = completed.stderr.strip() or completed.stdout.strip()
        stderr_first_line = stderr.splitlines()[0] if stderr else "<empty>"
        print(
            f"[worker] sync subprocess failed exit={completed.returncode} stderr_first={stderr_first_line}",
            flush=True,
        )
        raise JobRunError(
            f"sync subprocess failed (exit={completed.returncode}): {stderr}",
            retryable=completed.returncode in RETRYABLE_EXIT_CODES,
        )

    output = completed.stdout.strip().splitlines()
    if not output:
        raise JobRunError("sync subprocess produced no output", retryable=False)

    try:
        parsed = json.loads(output[-1])
    except json.JSONDecodeError as exc:
        raise JobRunError(
            f"sync subprocess returned invalid JSON: {output[-1]}", retryable=False
        ) from exc

    if not isinstance(parsed, dict):
        raise JobRunError("sync subprocess payload must be an object", retryable=False)
    return parsed


def _mark_job_succeeded(engine: Engine, job_id: int | str, result_json: dict[str, Any]) -> None:
    with engine.begin() as connection:
        connection.execute(
            text(
                """
                UPDATE jobs
                SET status = 'succeeded',
                    result_json = :result_json,
                    finished_at = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP,
                    error = NULL
                WHERE CAST(id AS TEXT) = CAST(:job_id AS TEXT)
                """
            ),
            {"job_id": job_id, "result_json": json.dumps(result_json)},
        )


def _mark_job_failure(
    engine: Engine,
    *,
    job_id: int | str,
    attempts: int,
    max_attempts: int,
    error_message: str,
    retryable: bool,
) -> str:
    next_attempts = attempts + 1
    status = "queued" if retryable and next_attempts < max_attempts else "failed"

    with engine.begin() as connection:
        connection.execute(
            text(
                """
                UPDATE jobs
                SET status = CAST(:status AS VARCHAR),
                    attempts = :attempts,
                    error = :error,
                    finished_at = CASE WHEN CAST(:status AS VARCHAR) = 'failed' THEN CURRENT_TIMESTAMP ELSE NULL END,
                    started_at = CASE WHEN CAST(:status AS VARCHAR) = 'queued' THEN NULL ELSE started_at END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE CAST(id AS TEXT) = CAST(:job_id AS TEXT)
                """
            ),
            {
                "job_id": job_id,
                "status": status,
                "attempts": next_attempts,
                "error": error_message,
            },
        )
    return status


def process_claimed_job(
    engine: Engine,
    job: dict[str, Any],
    *,
    runner: Callable[[dict[str, Any] | None], dict[str, Any]],
) -> None:
    job_id = _coerce_job_id(job["id"])
    attempts = int(job.get("attempts", 0))
    max_attempts = int(job.get("max_attempts") or get_settings().job_max_attempts)
    payload = _normalize_payload(job.get("payload_json"))

    try:
        result_json = runner(payload)
    except Exception as exc:
        status = _mark_job_failure(
            engine,
            job_id=job_id,
            attempts=attempts,
            max_attempts=max_attempts,
            error_message=str(exc),
            retryable=getattr(exc, "retryable", True),
        )
        print(
            f"[worker] job failed job_id={job_id} attempts={attempts + 1}/{max_attempts} "
            f"status={status} error={exc}",
            flush=True,
        )
        return

    _mark_job_succeeded(engine, job_id, result_json)
    print(f"[worker] job succeeded job_id={job_id} result={result_json}", flush=True)


def main() -> None:
    poll_seconds = get_settings().worker_poll_seconds
    engine = get_engine()

    while True:
        job = claim_next_sync_job(engine)
        if job is None:
            sleep(poll_seconds)
            continue

        process_claimed_job(engine, job, runner=run_sync_subprocess)


if __name__ == "__main__":
    main()
