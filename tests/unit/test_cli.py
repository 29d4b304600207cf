from __future__ import annotations

import pytest

from property_sync import __version__
from property_sync.cli import build_parser, main


@pytest.fixture
def configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SYNC_DEDUP_CONFIDENCE", "0.9")
    monkeypatch.setenv("SYNC_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("SYNC_RETRY_MAX_ATTEMPTS", "1")


def test_missing_confidence_is_a_configuration_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["list-workflows"]) == 2
    assert "Configuration error" in capsys.readouterr().err


def test_list_workflows(configured: None, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["list-workflows"]) == 0

    out = capsys.readouterr().out
    assert "daily-sync [0 */30 12-23 * * 2-6]: Daily Property Sync (10 steps)" in out
    assert "tenant-moveout: Tenant Move-Out Process (5 steps)" in out


def test_run_workflow_prints_execution(configured: None, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["run-workflow", "tenant-moveout", "--params", '{"leaseId": "L-200"}'])

    assert code == 0
    out = capsys.readouterr().out
    assert '"workflow": "tenant-moveout"' in out
    assert '"status": "completed"' in out


def test_failed_run_exits_nonzero(configured: None, capsys: pytest.CaptureFixture[str]) -> None:
    code = main(["run-workflow", "emergency-maintenance", "--params", '{"workOrderId": "WO-404"}'])

    assert code == 1
    assert '"status": "failed"' in capsys.readouterr().out


def test_unknown_workflow_exit_code(configured: None, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["run-workflow", "nope"]) == 3
    assert "Workflow not registered: nope" in capsys.readouterr().err


def test_find_matches_prints_json(configured: None, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["find-matches", "--entity", '{"name": "Anderson Properties"}']) == 0
    assert capsys.readouterr().out.strip().endswith("[]")


def test_run_scheduler_for_a_bounded_duration(configured: None) -> None:
    assert main(["run-scheduler", "--duration", "0.01"]) == 0


def test_params_must_be_a_json_object() -> None:
    parser = build_parser()

    with pytest.raises(SystemExit):
        parser.parse_args(["run-workflow", "x", "--params", "[1, 2]"])
    with pytest.raises(SystemExit):
        parser.parse_args(["run-workflow", "x", "--params", "{not json"])


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out
