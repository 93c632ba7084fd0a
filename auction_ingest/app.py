"""Typer CLI entrypoint for auction-ingest."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, RefreshMode
from .logging_conf import available_make_logs, configure_logging, log_path_for, tail_log
from .orchestrator import IngestionService

app = typer.Typer(
    help="auction-ingest 命令行工具",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="日志查看命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()

PLAN_NOTE = "队列为按配置生成的初始计划，不反映其他进程中正在运行的队列。"


@dataclass
class AppState:
    repository: ConfigRepository
    verbose: bool = False

    def service(self, *, seed: bool = True, refresh_mode: RefreshMode | None = None) -> IngestionService:
        return IngestionService(self.repository, refresh_mode=refresh_mode, seed=seed)


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    repository.load_global_config()
    configure_logging(verbose=verbose)
    return AppState(repository=repository, verbose=verbose)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _print_validation_error(exc: ValidationError) -> None:
    console.print("参数校验失败：", style="red")
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "-"
        console.print(f"- {location}: {error.get('msg')}", style="red")


def _render_status_table(status: dict[str, Any]) -> Table:
    table = Table(title="采集状态", box=box.SIMPLE_HEAD)
    table.add_column("指标", style="cyan", no_wrap=True)
    table.add_column("数值", style="green")
    for key, value in status.items():
        table.add_row(key, str(value))
    return table


def _render_jobs_table(jobs: Iterable[dict[str, Any]], title: str = "任务队列") -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("任务 ID", style="cyan", no_wrap=True)
    table.add_column("优先级", justify="right")
    table.add_column("状态", style="magenta")
    table.add_column("上次采集", style="green")
    table.add_column("车型数", justify="right")
    table.add_column("新增记录", justify="right")
    table.add_column("错误", style="red", overflow="fold")
    for job in jobs:
        table.add_row(
            str(job["id"]),
            str(job["priority"]),
            str(job["status"]),
            str(job["last_collected_at"] or "-"),
            str(job["discovered_model_count"]),
            str(job["records_collected"]),
            str(job["last_error"] or ""),
        )
    return table


app.add_typer(log_app, name="log", help="查看日志文件")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("run", help="启动采集循环（Ctrl+C 停止）。")
def run(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="队列跑完一轮后退出。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    service = state.service(refresh_mode=RefreshMode.ONE_SHOT if once else None)
    try:
        if once:
            service.run_until_drained()
            console.print(_render_status_table(service.get_status()))
            return
        service.start()
        console.print("采集循环已启动，按 Ctrl+C 停止。", style="green")
        try:
            while service.scheduler.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            console.print("正在停止，等待进行中的任务完成…", style="yellow")
    finally:
        service.close()


@app.command("collect", help="立即采集一个品牌（可指定车型）。")
def collect(
    ctx: typer.Context,
    make: str = typer.Argument(..., help="品牌，例如 Honda。"),
    model: Optional[str] = typer.Option(None, "--model", help="车型；为空则自动发现。"),
    site: int = typer.Option(1, "--site", help="1=copart, 2=iaai"),
    year_from: Optional[int] = typer.Option(None, "--year-from", help="起始年份"),
    year_to: Optional[int] = typer.Option(None, "--year-to", help="截止年份"),
    days_back: Optional[int] = typer.Option(None, "--days-back", help="回溯天数 (1-365)"),
    priority: int = typer.Option(1, "--priority", help="优先级，数值越小越优先"),
) -> None:
    state = _get_state(ctx)
    options: dict[str, Any] = {"site": site, "specific_model": model, "priority": priority}
    for key, value in (("year_from", year_from), ("year_to", year_to), ("days_back", days_back)):
        if value is not None:
            options[key] = value
    service = state.service(seed=False, refresh_mode=RefreshMode.ONE_SHOT)
    try:
        try:
            job = service.enqueue(make, options)
        except ValidationError as exc:
            _print_validation_error(exc)
            raise typer.Exit(code=1)
        console.print(f"已加入队列：{job.id}", style="dim")
        service.run_until_drained()
        console.print(_render_jobs_table([job.to_dict()], title="采集结果"))
        if job.status.value == "failed":
            raise typer.Exit(code=1)
    finally:
        service.close()


@app.command("bulk", help="按优先级分层批量采集多个品牌。")
def bulk(
    ctx: typer.Context,
    makes: List[str] = typer.Argument(..., help="一个或多个品牌。"),
    site: int = typer.Option(1, "--site", help="1=copart, 2=iaai"),
    days_back: Optional[int] = typer.Option(None, "--days-back", help="回溯天数 (1-365)"),
    priority: int = typer.Option(1, "--priority", help="统一优先级"),
    parallel: Optional[int] = typer.Option(None, "--parallel", help="同层最大并发数"),
    stagger: Optional[float] = typer.Option(None, "--stagger", help="相邻启动间隔（秒）"),
) -> None:
    state = _get_state(ctx)
    defaults = state.repository.load_global_config().default_options.model_dump()
    requests = []
    for make in makes:
        payload = {**defaults, "make": make, "site": site, "priority": priority}
        if days_back is not None:
            payload["days_back"] = days_back
        requests.append(payload)
    service = state.service(seed=False)
    try:
        try:
            results = service.run_bulk(requests, max_parallel=parallel, stagger_seconds=stagger)
        except ValidationError as exc:
            _print_validation_error(exc)
            raise typer.Exit(code=1)
        console.print(_render_jobs_table(results, title="批量采集结果"))
    finally:
        service.close()


@app.command("migrate", help="把过期的新鲜数据迁移到永久库。")
def migrate(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    service = state.service(seed=False)
    try:
        report = service.migrate_now()
    finally:
        service.close()
    table = Table(title="迁移结果", box=box.SIMPLE_HEAD)
    table.add_column("指标", style="cyan")
    table.add_column("数量", justify="right", style="green")
    for key, value in report.as_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command(
    "status",
    help="查看数据量概况与按配置生成的初始队列计划（队列只存在于运行中的进程内，此处不读取其他进程的队列）。",
)
def status(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", help="显示的队列任务数"),
) -> None:
    state = _get_state(ctx)
    service = state.service()
    try:
        console.print(PLAN_NOTE, style="dim")
        console.print(_render_status_table(service.get_status()))
        jobs = service.get_queue_snapshot(limit)
    finally:
        service.close()
    if jobs:
        console.print(_render_jobs_table(jobs))
    else:
        console.print("队列为空。", style="dim")


@app.command(
    "progress",
    help="按品牌汇总数据量与初始队列计划（不读取其他进程中正在运行的队列）。",
)
def progress(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    service = state.service()
    try:
        summary = service.get_vehicle_progress_summary()
    finally:
        service.close()
    console.print(PLAN_NOTE, style="dim")
    if not summary:
        console.print("暂无采集任务。", style="dim")
        return
    table = Table(title="品牌进度", box=box.SIMPLE_HEAD)
    table.add_column("品牌", style="cyan")
    table.add_column("待处理", justify="right")
    table.add_column("已完成", justify="right")
    table.add_column("失败", justify="right", style="red")
    table.add_column("车型数", justify="right")
    table.add_column("永久库", justify="right", style="green")
    table.add_column("新鲜库", justify="right", style="green")
    table.add_column("上次采集")
    for entry in summary:
        jobs = entry["jobs"]
        table.add_row(
            entry["make"],
            str(jobs["pending"] + jobs["running"]),
            str(jobs["completed"]),
            str(jobs["failed"]),
            str(entry["discovered_models"]),
            str(entry["permanent_records"]),
            str(entry["fresh_records"]),
            str(entry["last_collected_at"] or "-"),
        )
    console.print(table)


@log_app.command("list", help="列出可用的品牌日志文件。")
def log_list() -> None:
    logs = list(available_make_logs())
    console.print("日志文件：", style="cyan")
    if not logs:
        console.print("暂未生成任何品牌日志。", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("文件名", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="查看指定日志的最近内容。")
def log_show(
    make: Optional[str] = typer.Option(None, "--make", help="品牌名称（为空则展示全局日志）。"),
    tail: int = typer.Option(100, "--tail", help="显示最近 N 行内容。"),
) -> None:
    lines = tail_log(log_path_for(make), tail)
    if not lines:
        console.print("暂无日志信息，请稍后再试。", style="dim")
        return
    header = f"{'品牌日志' if make else '全局日志'} · 最近 {len(lines)} 行"
    console.print(header, style="cyan")
    console.print("".join(lines))


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
