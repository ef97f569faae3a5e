from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .store import StoreSnapshot
from .tasks import TaskStatus


@dataclass(frozen=True)
class Summary:
    total_tasks: int
    completed_tasks: int
    fled_tasks: int
    open_tasks: int
    completion_rate: float
    total_focus_sec: float
    session_count: int
    average_session_sec: float
    current_streak: int
    longest_streak: int
    unlocked_achievements: int
    total_achievements: int


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    minutes, sec = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}小时{minutes:02d}分{sec:02d}秒"
    return f"{minutes}分{sec:02d}秒"


def build_summary(snapshot: StoreSnapshot) -> Summary:
    tasks = snapshot.tasks
    completed = sum(1 for item in tasks if item.status == TaskStatus.COMPLETED)
    fled = sum(1 for item in tasks if item.status == TaskStatus.RUNNING_AWAY)
    sessions = snapshot.focus_sessions
    stats = snapshot.productivity_stats
    total_focus = sum(item.duration for item in sessions)

    return Summary(
        total_tasks=len(tasks),
        completed_tasks=completed,
        fled_tasks=fled,
        open_tasks=len(tasks) - completed - fled,
        completion_rate=(completed / len(tasks)) if tasks else 0.0,
        total_focus_sec=total_focus,
        session_count=len(sessions),
        average_session_sec=(total_focus / len(sessions)) if sessions else 0.0,
        current_streak=stats.current_streak,
        longest_streak=stats.longest_streak,
        unlocked_achievements=sum(1 for item in snapshot.achievements if item.is_unlocked),
        total_achievements=len(snapshot.achievements),
    )


def generate_summary_report(
    snapshot: StoreSnapshot,
    out_dir: Path,
    now: datetime | None = None,
) -> Path:
    ref = now or datetime.now().astimezone()
    summary = build_summary(snapshot)
    stats = snapshot.productivity_stats

    lines: list[str] = []
    lines.append(f"# TimeWarp 报告 {ref.strftime('%Y-%m-%d')}")
    lines.append("")
    lines.append(f"- 生成时间：{ref.strftime('%Y-%m-%d %H:%M:%S %Z')}")
    lines.append("")

    lines.append("## 总览")
    lines.append(f"- 任务总数：{summary.total_tasks}")
    lines.append(f"- 已完成：{summary.completed_tasks}（完成率 {summary.completion_rate:.0%}）")
    lines.append(f"- 已逃跑：{summary.fled_tasks}")
    lines.append(f"- 累计完成：{stats.total_tasks_completed} 次")
    lines.append(f"- 专注总时长：{format_duration(summary.total_focus_sec)}")
    lines.append(f"- 平均专注时长：{format_duration(summary.average_session_sec)}")
    lines.append(f"- 当前连续天数：{summary.current_streak}，最长：{summary.longest_streak}")
    lines.append("")

    lines.append("## 任务")
    if snapshot.tasks:
        lines.append("| 任务 | 状态 | 重要度 | 拖延度 | 用时 |")
        lines.append("| --- | --- | --- | --- | --- |")
        for item in sorted(snapshot.tasks, key=lambda t: t.time_spent, reverse=True):
            lines.append(
                f"| {item.title or '未命名任务'} | {item.status.value} | {item.importance} | "
                f"{item.procrastination_level}% | {format_duration(item.time_spent)} |"
            )
    else:
        lines.append("暂无任务。")
    lines.append("")

    lines.append("## 成就")
    lines.append(f"已解锁 {summary.unlocked_achievements}/{summary.total_achievements}")
    lines.append("")
    for item in snapshot.achievements:
        mark = "x" if item.is_unlocked else " "
        when = f"（{item.unlocked_at.strftime('%Y-%m-%d %H:%M')}）" if item.unlocked_at else ""
        lines.append(f"- [{mark}] {item.title}{when}：{item.description}")
    lines.append("")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    report_path = out_dir / f"timewarp-{ref.strftime('%Y%m%d')}.md"
    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
