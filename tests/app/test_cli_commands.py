from __future__ import annotations

from dataclasses import dataclass, field

import pytest
from rich.console import Console
from typer.testing import CliRunner

from auction_ingest.app import AppState, app
from auction_ingest.orchestrator import IngestionService


class StubMaintenance:
    def schedule_migration(self, schedule, callback) -> None:
        return

    def start(self) -> None:
        return

    def shutdown(self) -> None:
        return

    def next_migration_run(self):
        return None


@dataclass
class StubState(AppState):
    vendor: object = None
    built: list = field(default_factory=list)

    def service(self, *, seed=True, refresh_mode=None) -> IngestionService:
        service = IngestionService(
            self.repository,
            vendor_client=self.vendor,
            maintenance=StubMaintenance(),
            refresh_mode=refresh_mode,
            sleep=lambda _seconds: None,
            seed=seed,
        )
        self.built.append(service)
        return service


@pytest.fixture
def cli_state(config_repository, stub_vendor, monkeypatch):
    def _install(script=None) -> StubState:
        state = StubState(repository=config_repository, vendor=stub_vendor(script))
        monkeypatch.setattr("auction_ingest.app.build_state", lambda verbose: state)
        monkeypatch.setattr("auction_ingest.app.console", Console(width=200))
        return state

    return _install


def test_collect_single_model(cli_state, make_record) -> None:
    state = cli_state({("Civic", 1): [make_record(1), make_record(2), make_record(3)]})
    result = CliRunner().invoke(app, ["collect", "Honda", "--model", "Civic", "--site", "1"])
    assert result.exit_code == 0, result.stdout
    assert "Honda-Civic-1" in result.stdout
    assert "completed" in result.stdout
    assert state.vendor.pages_requested("Civic") == [1, 2]
    assert state.vendor.closed


def test_collect_rejects_invalid_options(cli_state) -> None:
    state = cli_state()
    result = CliRunner().invoke(app, ["collect", "Honda", "--days-back", "400"])
    assert result.exit_code == 1
    assert "参数校验失败" in result.stdout
    assert state.vendor.calls == []


def test_bulk_command(cli_state) -> None:
    cli_state()
    result = CliRunner().invoke(app, ["bulk", "Kia", "Ford", "--stagger", "0"])
    assert result.exit_code == 0, result.stdout
    assert "批量采集结果" in result.stdout
    assert "Kia-all-1" in result.stdout
    assert "Ford-all-1" in result.stdout


def test_status_command(cli_state) -> None:
    cli_state()
    result = CliRunner().invoke(app, ["status"])
    assert result.exit_code == 0, result.stdout
    assert "采集状态" in result.stdout
    assert "N/A" in result.stdout
    assert "队列为空" in result.stdout
    assert "初始计划" in result.stdout
    assert "next_migration_at" in result.stdout


def test_migrate_command(cli_state) -> None:
    cli_state()
    result = CliRunner().invoke(app, ["migrate"])
    assert result.exit_code == 0, result.stdout
    assert "迁移结果" in result.stdout
    assert "expired" in result.stdout


def test_progress_without_jobs(cli_state) -> None:
    cli_state()
    result = CliRunner().invoke(app, ["progress"])
    assert result.exit_code == 0, result.stdout
    assert "暂无采集任务" in result.stdout
    assert "初始计划" in result.stdout


def test_run_once_with_empty_queue(cli_state) -> None:
    cli_state()
    result = CliRunner().invoke(app, ["run", "--once"])
    assert result.exit_code == 0, result.stdout
    assert "采集状态" in result.stdout


def test_log_commands(cli_state, ingest_home) -> None:
    cli_state()
    runner = CliRunner()
    result = runner.invoke(app, ["log", "list"])
    assert result.exit_code == 0
    assert "暂未生成任何品牌日志" in result.stdout

    makes_dir = ingest_home / "logs" / "makes"
    makes_dir.mkdir(parents=True, exist_ok=True)
    (makes_dir / "honda.log").write_text("line-1\nline-2\nline-3\n", encoding="utf-8")
    result = runner.invoke(app, ["log", "list"])
    assert "honda.log" in result.stdout

    result = runner.invoke(app, ["log", "show", "--make", "Honda", "--tail", "2"])
    assert result.exit_code == 0
    assert "line-3" in result.stdout
    assert "line-1" not in result.stdout
