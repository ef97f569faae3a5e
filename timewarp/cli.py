from __future__ import annotations

import argparse
from datetime import date, datetime, time as dtime
import logging
from pathlib import Path
import sys
from typing import Any

from .clock import Clock, RealClock
from .db import TimewarpDB, default_db_path
from .distortion import format_countdown, multiplier
from .exporting import export_sessions_csv
from .reporting import build_summary, format_duration, generate_summary_report
from .store import TimewarpStore
from .tasks import IMPORTANCE_MAX, IMPORTANCE_MIN, Task, TaskStatus
from .ticker import DEFAULT_TICK_SECONDS, TickScheduler, TimerConfig


DEFAULT_OUT_DIR = Path(__file__).resolve().parent / "out"


def parse_when(value: str) -> datetime:
    text = value.strip()
    local_tz = datetime.now().astimezone().tzinfo
    if local_tz is None:
        raise argparse.ArgumentTypeError("无法识别本地时区")

    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, dtime.max.replace(microsecond=0)).replace(tzinfo=local_tz)

        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=local_tz)
        return dt
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"时间格式错误：{value}，请使用 YYYY-MM-DD 或 ISO 日期时间"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timewarp",
        description="TimeWarp：会扭曲时间的专注计时器与任务追踪器",
    )
    parser.add_argument(
        "--db",
        default=str(default_db_path()),
        help="SQLite 数据库路径（默认 timewarp/data/timewarp.sqlite，可用 TIMEWARP_DB 覆盖）",
    )
    parser.add_argument("--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="新建任务")
    add_parser.add_argument("title", help="任务标题")
    add_parser.add_argument("--description", default="", help="任务描述")
    add_parser.add_argument("--importance", type=int, default=3, help="重要度 1-5")
    add_parser.add_argument("--deadline", type=parse_when, default=None, help="截止时间")

    list_parser = subparsers.add_parser("list", help="列出任务")
    list_parser.add_argument(
        "--status",
        choices=[item.value for item in TaskStatus],
        default=None,
        help="按状态过滤",
    )

    edit_parser = subparsers.add_parser("edit", help="编辑任务")
    edit_parser.add_argument("task_id", help="任务 ID（可用前缀）")
    edit_parser.add_argument("--title", default=None)
    edit_parser.add_argument("--description", default=None)
    edit_parser.add_argument("--importance", type=int, default=None)
    edit_parser.add_argument("--deadline", type=parse_when, default=None)

    for name, help_text in (
        ("done", "完成任务"),
        ("avoid", "拖延任务（拖延度 +20，满 100 任务逃跑）"),
        ("delete", "删除任务"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("task_id", help="任务 ID（可用前缀）")

    focus_parser = subparsers.add_parser("focus", help="为任务开始一次专注倒计时")
    focus_parser.add_argument("task_id", help="任务 ID（可用前缀）")
    focus_parser.add_argument("--minutes", type=float, default=25.0, help="倒计时时长（分钟）")
    focus_parser.add_argument(
        "--distortion",
        type=float,
        default=None,
        help="时间扭曲度 0-100（>=95 时时间倒流）",
    )
    focus_parser.add_argument(
        "--tick-seconds",
        type=float,
        default=DEFAULT_TICK_SECONDS,
        help="刷新间隔（秒，>0）",
    )

    subparsers.add_parser("stats", help="查看统计")
    subparsers.add_parser("achievements", help="查看成就")

    for name, help_text in (("report", "生成 Markdown 报告"), ("export", "导出专注记录 CSV")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--out-dir",
            default=str(DEFAULT_OUT_DIR),
            help="输出目录，默认 timewarp/out",
        )

    serve_parser = subparsers.add_parser("serve", help="启动本地 HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8765)

    return parser


def main(argv: list[str] | None = None, clock: Clock | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.command == "serve":
        return _handle_serve(args)

    db = TimewarpDB(Path(args.db))
    store = TimewarpStore(clock=clock or RealClock())
    store.load_state(db.load_state())

    handlers = {
        "add": _handle_add,
        "list": _handle_list,
        "edit": _handle_edit,
        "done": _handle_done,
        "avoid": _handle_avoid,
        "delete": _handle_delete,
        "focus": _handle_focus,
        "stats": _handle_stats,
        "achievements": _handle_achievements,
        "report": _handle_report,
        "export": _handle_export,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 2

    unlocked_before = {item.id for item in store.achievements() if item.is_unlocked}
    code = handler(args, store, parser)
    db.save_state(store.export_state())
    for item in store.achievements():
        if item.is_unlocked and item.id not in unlocked_before:
            print(f"解锁成就：{item.title} —— {item.description}")
    return code


def _resolve_task(store: TimewarpStore, key: str) -> Task | None:
    exact = store.get_task(key)
    if exact is not None:
        return exact
    matches = [item for item in store.tasks() if item.id.startswith(key.strip())]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        print(f"任务 ID 前缀不唯一：{key}")
    else:
        print(f"未找到任务：{key}")
    return None


def _describe(task: Task) -> str:
    deadline = task.deadline.astimezone().strftime("%Y-%m-%d %H:%M") if task.deadline else "-"
    return (
        f"{task.id[:8]} | {task.status.value:<12} | 重要度 {task.importance} | "
        f"拖延度 {task.procrastination_level:>3}% | 截止 {deadline} | "
        f"用时 {format_duration(task.time_spent)} | {task.title}"
    )


def _check_importance(parser: argparse.ArgumentParser, value: int | None) -> None:
    if value is not None and not IMPORTANCE_MIN <= value <= IMPORTANCE_MAX:
        parser.error(f"--importance 必须在 {IMPORTANCE_MIN}-{IMPORTANCE_MAX} 之间")


def _handle_add(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    if not args.title.strip():
        parser.error("任务标题不能为空")
    _check_importance(parser, args.importance)
    task = store.add_task(
        args.title,
        description=args.description,
        importance=args.importance,
        deadline=args.deadline,
    )
    print(f"已创建任务：{task.id}")
    return 0


def _handle_list(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    status = TaskStatus(args.status) if args.status else None
    items = store.tasks(status)
    if not items:
        print("没有匹配任务。")
        return 0
    for item in items:
        print(_describe(item))
    return 0


def _handle_edit(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    _check_importance(parser, args.importance)
    task = _resolve_task(store, args.task_id)
    if task is None:
        return 1
    patch: dict[str, Any] = {
        key: getattr(args, key)
        for key in ("title", "description", "importance", "deadline")
        if getattr(args, key) is not None
    }
    if task.status.terminal:
        print(f"任务已处于终态（{task.status.value}），不可编辑。")
        return 1
    result = store.update_task(task.id, patch)
    if result.after is not None:
        print(_describe(result.after))
    return 0


def _handle_done(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    task = _resolve_task(store, args.task_id)
    if task is None:
        return 1
    result = store.complete_task(task.id)
    if not result.changed:
        if task.status == TaskStatus.COMPLETED:
            print("任务早已完成。")
            return 0
        print(f"任务已逃跑，无法完成：{task.title}")
        return 1
    print(f"任务完成：{task.title}")
    return 0


def _handle_avoid(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    task = _resolve_task(store, args.task_id)
    if task is None:
        return 1
    result = store.procrastinate(task.id)
    if not result.changed or result.after is None:
        print(f"任务处于终态（{task.status.value}），拖延无效。")
        return 1
    if result.after.status == TaskStatus.RUNNING_AWAY:
        print(f"任务逃跑了：{task.title}")
    else:
        print(f"拖延度：{result.after.procrastination_level}%")
    return 0


def _handle_delete(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    task = _resolve_task(store, args.task_id)
    if task is None:
        return 1
    store.delete_task(task.id)
    print(f"已删除任务：{task.title}")
    return 0


def _handle_focus(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    if args.minutes <= 0:
        parser.error("--minutes 必须大于 0")
    if args.tick_seconds <= 0:
        parser.error("--tick-seconds 必须大于 0")
    task = _resolve_task(store, args.task_id)
    if task is None:
        return 1

    config = TimerConfig(
        task_id=task.id,
        duration_sec=args.minutes * 60,
        tick_seconds=args.tick_seconds,
        distortion=args.distortion,
    )
    if not store.start_timer(config.duration_sec, task_id=config.task_id) or store.active_session is None:
        store.reset_timer()
        print(f"无法为该任务开始专注（状态：{task.status.value}）。")
        return 1
    if config.distortion is not None:
        store.enter_distortion()
        store.set_distortion_level(config.distortion)
        level = store.timer().distortion_level
        print(f"时间扭曲度 {level:g}，流速 {multiplier(level):g}x")

    last_shown: dict[str, str] = {}

    def render(event: str, payload: dict[str, Any]) -> None:
        if event != "tick":
            return
        text = format_countdown(float(payload.get("remaining", 0.0)))
        if last_shown.get("text") != text:
            last_shown["text"] = text
            sys.stdout.write(f"\r{task.title} 剩余 {text}")
            sys.stdout.flush()

    store.subscribe(render)
    scheduler = TickScheduler(store, store.clock, tick_seconds=config.tick_seconds)
    try:
        scheduler.run_until_idle()
    except KeyboardInterrupt:
        scheduler.stop()
        session = store.active_session
        store.reset_timer()
        sys.stdout.write("\r" + (" " * 80) + "\r")
        if session is not None:
            print("专注已中断，已记录本次用时。")
        return 130
    finally:
        store.unsubscribe(render)

    sys.stdout.write("\r" + (" " * 80) + "\r")
    sessions = store.sessions()
    if sessions:
        print(f"专注完成：{task.title}，实际用时 {format_duration(sessions[-1].duration)}")
    return 0


def _handle_stats(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    summary = build_summary(store.snapshot())
    stats = store.stats
    print(f"任务总数: {summary.total_tasks}")
    print(f"已完成: {summary.completed_tasks}（完成率 {summary.completion_rate:.0%}）")
    print(f"已逃跑: {summary.fled_tasks}")
    print(f"累计完成次数: {stats.total_tasks_completed}")
    print(f"专注总时长: {format_duration(stats.total_time_spent)}")
    print(f"平均专注时长: {format_duration(summary.average_session_sec)}")
    print(f"连续天数: {stats.current_streak}（最长 {stats.longest_streak}）")
    return 0


def _handle_achievements(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    for item in store.achievements():
        mark = "✔" if item.is_unlocked else "·"
        when = item.unlocked_at.astimezone().strftime("%Y-%m-%d %H:%M") if item.unlocked_at else ""
        print(f"{mark} {item.title:<30} {when}")
        print(f"  {item.description}")
    return 0


def _handle_report(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    report_path = generate_summary_report(store.snapshot(), Path(args.out_dir))
    print(f"报告已生成：{report_path}")
    return 0


def _handle_export(args: argparse.Namespace, store: TimewarpStore, parser: argparse.ArgumentParser) -> int:
    csv_path = export_sessions_csv(store.sessions(), Path(args.out_dir), tasks=store.tasks())
    print(f"CSV 已导出：{csv_path}")
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError as exc:
        print(f"无法启动 API：缺少 uvicorn。{exc}")
        return 2

    from .api.app import create_app

    uvicorn.run(create_app(db_path=Path(args.db)), host=args.host, port=args.port, log_level="warning")
    return 0
