import json
from pathlib import Path
import subprocess

import pytest

from docindex import worker
from docindex.config import get_settings
from docindex.services.index.runtime import build_index_context
from docindex.services.index.sync_job_runner import apply_overrides, main, run_sync_job


def test_run_sync_job_reports_metrics(index_env: Path) -> None:
    (index_env / "algebra.md").write_text("a quadratic has at most two real roots", encoding="utf-8")
    (index_env / "cells.txt").write_text("the nucleus stores genetic material", encoding="utf-8")

    metrics = run_sync_job(build_index_context(get_settings()))

    assert metrics["documents"] == 2
    assert metrics["uploaded"] == ["algebra.md", "cells.txt"]
    assert metrics["skipped"] == []
    assert metrics["batch_status"] == "completed"
    assert metrics["vector_store_id"].startswith("vs_local_")
    assert metrics["embed_model"] == "hash-sha256-16"
    assert metrics["duration_ms"] >= 0

    rerun = run_sync_job(build_index_context(get_settings()))

    assert rerun["uploaded"] == []
    assert rerun["skipped"] == ["algebra.md", "cells.txt"]
    assert rerun["batch_status"] is None


def test_apply_overrides_replaces_known_string_fields(index_env: Path) -> None:
    settings = apply_overrides(
        get_settings(),
        {"documents_dir": "/srv/docs", "vector_store_id": "vs_override", "chunk_size": None, "other": 1},
    )

    assert settings.documents_dir == "/srv/docs"
    assert settings.vector_store_id == "vs_override"
    assert settings.chunk_size == 200


def test_apply_overrides_rejects_non_string_values(index_env: Path) -> None:
    with pytest.raises(ValueError, match="documents_dir must be a string"):
        apply_overrides(get_settings(), {"documents_dir": 42})


def test_main_prints_json_metrics(index_env: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (index_env / "cells.txt").write_text("the nucleus stores genetic material", encoding="utf-8")

    main([])

    output = capsys.readouterr().out.strip().splitlines()
    assert json.loads(output[-1])["uploaded"] == ["cells.txt"]


def test_main_uses_payload_documents_dir(
    index_env: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    other_docs = tmp_path / "other-docs"
    other_docs.mkdir()
    (other_docs / "physics.txt").write_text("force equals mass times acceleration", encoding="utf-8")

    main(["--payload-json", json.dumps({"documents_dir": str(other_docs)})])

    output = capsys.readouterr().out.strip().splitlines()
    assert json.loads(output[-1])["uploaded"] == ["physics.txt"]


def test_main_exits_with_discovery_code_for_empty_folder(
    index_env: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 2
    assert "No source documents found" in capsys.readouterr().err


def test_main_exits_with_configuration_code_without_credential(
    index_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("INDEX_BACKEND", "openai")

    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 3


def test_main_rejects_non_object_payload(index_env: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--payload-json", "[1, 2]"])

    assert excinfo.value.code == 1


def test_run_sync_subprocess_marks_configuration_failures_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(command, **kwargs):
        return subprocess.CompletedProcess(command, 3, stdout="", stderr="Missing OPENAI_API_KEY\n")

    monkeypatch.setattr(worker.subprocess, "run", fake_run)

    with pytest.raises(worker.JobRunError) as excinfo:
        worker.run_sync_subprocess(None)

    assert excinfo.value.retryable is False
    assert "Missing OPENAI_API_KEY" in str(excinfo.value)


def test_run_sync_subprocess_parses_last_output_line(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(command, **kwargs):
        captured["command"] = command
        stdout = "[index-sync] batch=vsfb_1 status=completed\n" + json.dumps({"documents": 1}) + "\n"
        return subprocess.CompletedProcess(command, 0, stdout=stdout, stderr="")

    monkeypatch.setattr(worker.subprocess, "run", fake_run)

    assert worker.run_sync_subprocess({"documents_dir": "/srv/docs"}) == {"documents": 1}
    assert captured["command"][1:3] == ["-m", "docindex.services.index.sync_job_runner"]
    assert json.loads(captured["command"][-1]) == {"documents_dir": "/srv/docs"}
