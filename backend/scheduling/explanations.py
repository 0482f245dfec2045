"""
Explanation Generator for the Day Planner scheduling engine.

Turns a task's scores, deadline and placement into text a person can read:
a one-paragraph rationale attached to every slot, and a longer Markdown
analysis for a single task. Output depends only on the inputs (no locale,
no randomness), so the same schedule always reads the same way.
"""

from datetime import datetime, timedelta
from typing import List

from .scoring import (
    WEIGHTS,
    Priority,
    ScoreSet,
    Task,
    minutes_between,
    round_half_up,
)


HIGH_RISK_THRESHOLD = 70
MODERATE_RISK_THRESHOLD = 40
LIMITED_FLEXIBILITY_THRESHOLD = 70


def format_clock(moment: datetime) -> str:
    """12-hour clock time, e.g. "09:05 AM"."""
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour:02d}:{moment.minute:02d} {suffix}"


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def hours_until_deadline(task: Task, now: datetime) -> int:
    return round_half_up(minutes_between(now, task.deadline) / 60)


def describe_deadline(task: Task, now: datetime) -> str:
    minutes = minutes_between(now, task.deadline)
    if minutes <= 0:
        return "a deadline that has already passed"
    if minutes < 60:
        return f"deadline in {_plural(max(1, int(minutes)), 'minute')}"
    hours = hours_until_deadline(task, now)
    if hours <= 24:
        return f"deadline in {_plural(hours, 'hour')}"
    return f"deadline in {_plural(round_half_up(hours / 24), 'day')}"


def collect_reasons(task: Task, scores: ScoreSet, now: datetime) -> List[str]:
    """Contributing reasons, in a fixed order; false conditions are skipped."""
    reasons = []

    if task.priority == Priority.HIGH:
        reasons.append("high priority")
    elif task.priority == Priority.MEDIUM:
        reasons.append("medium priority")

    reasons.append(describe_deadline(task, now))

    if task.is_deep_focus:
        reasons.append("requires deep focus")

    if task.is_fixed:
        reasons.append("has fixed time constraint")
    elif scores.final_score > LIMITED_FLEXIBILITY_THRESHOLD:
        reasons.append("limited scheduling flexibility")

    if scores.risk_score > HIGH_RISK_THRESHOLD:
        reasons.append("high risk of missing deadline if delayed")
    elif scores.risk_score > MODERATE_RISK_THRESHOLD:
        reasons.append("moderate deadline risk")

    return reasons


def generate_explanation(
    task: Task,
    scores: ScoreSet,
    scheduled_start: datetime,
    now: datetime
) -> str:
    """
    Explain why a task landed where it did.

    Example:
        Scheduled at 09:00 AM–09:30 AM because the task has high priority,
        deadline in 1 day. 📊 Scheduling Score: 62/100 • Urgency: ...
    """
    scheduled_end = scheduled_start + timedelta(minutes=task.estimated_duration)
    parts = [f"Scheduled at {format_clock(scheduled_start)}–{format_clock(scheduled_end)}"]

    reasons = collect_reasons(task, scores, now)
    if reasons:
        parts.append(f"because the task has {', '.join(reasons)}.")

    parts.append(f"\n\n📊 Scheduling Score: {scores.final_score}/100")
    parts.append(f"• Urgency: {scores.urgency_score}/100")
    parts.append(f"• Importance: {scores.importance_score}/100")
    parts.append(f"• Risk: {scores.risk_score}/100")

    return " ".join(parts)


def build_detailed_explanation(task: Task, scores: ScoreSet, now: datetime) -> str:
    """
    Markdown analysis of one task's scores, independent of any placement.

    Sections: scoring breakdown table, urgency, importance, risk and a
    scheduling recommendation.
    """
    lines = [f'## Scheduling Analysis for "{task.title}"', ""]

    lines.append("### Scoring Breakdown")
    lines.append("")
    lines.append("| Metric | Score | Weight | Contribution |")
    lines.append("|--------|-------|--------|--------------|")
    for label, score, weight in (
        ("Urgency", scores.urgency_score, WEIGHTS.urgency),
        ("Importance", scores.importance_score, WEIGHTS.importance),
        ("Risk", scores.risk_score, WEIGHTS.risk),
    ):
        lines.append(
            f"| {label} | {score}/100 | {round_half_up(weight * 100)}% | "
            f"{round_half_up(score * weight)} |"
        )
    lines.append(f"| **Final** | **{scores.final_score}/100** | | |")
    lines.append("")

    lines.append("### Urgency Analysis")
    minutes_remaining = minutes_between(now, task.deadline)
    hours_remaining = hours_until_deadline(task, now)
    days_remaining = round_half_up(hours_remaining / 24)

    if minutes_remaining <= 0:
        lines.append("⚠️ **OVERDUE**: This task is past its deadline!")
    elif minutes_remaining < 60:
        lines.append(
            f"🔴 **Critical**: Only {_plural(max(1, int(minutes_remaining)), 'minute')} "
            f"remaining until deadline."
        )
    elif hours_remaining <= 24:
        lines.append(f"🔴 **Critical**: Only {hours_remaining} hours remaining until deadline.")
    elif days_remaining <= 3:
        lines.append(f"🟠 **Urgent**: {days_remaining} days remaining until deadline.")
    else:
        lines.append(f"🟢 **Comfortable**: {days_remaining} days remaining until deadline.")

    if minutes_remaining > 0:
        share = round_half_up(task.estimated_duration / minutes_remaining * 100)
        lines.append(
            f"Task requires {task.estimated_duration} minutes, "
            f"representing {share}% of remaining time."
        )
    else:
        lines.append(
            f"Task requires {task.estimated_duration} minutes and no time "
            f"remains before the deadline."
        )
    lines.append("")

    lines.append("### Importance Analysis")
    lines.append(f"- Priority Level: **{task.priority.value.upper()}**")
    fixed_note = " (+30 importance bonus)" if task.is_fixed else ""
    lines.append(f"- Flexibility: **{task.flexibility.value}**{fixed_note}")
    focus_note = " (+10 importance bonus)" if task.is_deep_focus else ""
    lines.append(f"- Energy Requirement: **{task.energy_level.value}**{focus_note}")
    lines.append("")

    lines.append("### Risk Analysis")
    if scores.risk_score > HIGH_RISK_THRESHOLD:
        lines.append(
            "🔴 **High Risk**: Delaying this task significantly increases "
            "the chance of missing the deadline."
        )
    elif scores.risk_score > MODERATE_RISK_THRESHOLD:
        lines.append(
            "🟠 **Moderate Risk**: Some buffer time exists, but delays should be avoided."
        )
    else:
        lines.append("🟢 **Low Risk**: Adequate buffer time available for this task.")
    lines.append("")

    lines.append("### Scheduling Recommendation")
    if scores.final_score >= 70:
        lines.append(
            "📌 **Schedule immediately** - This task should be prioritized "
            "and scheduled in the next available slot."
        )
    elif scores.final_score >= 40:
        lines.append(
            "📋 **Schedule today** - This task should be scheduled within "
            "your working hours today."
        )
    else:
        lines.append(
            "📅 **Flexible scheduling** - This task can be scheduled when "
            "convenient, but don't forget about it."
        )

    return "\n".join(lines)
