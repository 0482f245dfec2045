"""
Schedule Generator for the Day Planner scheduling engine.

Places a day's pending tasks into the user's working hours:

1. Keep tasks that are not completed and whose deadline is on or after the
   target day, and score each one.
2. Fixed tasks keep their assigned time and seed the occupied intervals.
3. Movable tasks are placed greedily, highest final score first, at the
   earliest start that keeps `buffer_minutes` clear of every occupied
   interval, while respecting the daily deep-focus budget.

Tasks that cannot be placed are returned in `unscheduled` with a reason;
nothing is dropped and a single bad task never aborts the run. Only invalid
preferences raise.

There is one greedy pass, no backtracking.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .explanations import format_clock, generate_explanation
from .scoring import (
    ErrorCode,
    ScoreSet,
    Task,
    UserPreferences,
    ValidationError,
    WorkingHours,
    at_minute,
    calculate_all_scores,
    ensure_valid_preferences,
    minute_of_day,
    minutes_between,
    minutes_to_time,
    round_half_up,
    start_of_day,
    to_local,
    validate_task,
)


logger = logging.getLogger(__name__)

REASON_DEEP_FOCUS = "Exceeds daily deep-focus capacity ({limit} minutes)"
REASON_NO_SLOT = "No available time slot within working hours"
REASON_FIXED_UNASSIGNED = "Fixed task has no assigned time on this date"

MAX_RANGE_DAYS = 7


class InvalidDateRangeError(ValueError):
    """Raised for reversed or overly long schedule ranges."""

    def __init__(self, message: str):
        self.error = ValidationError(
            code=ErrorCode.ERR_INVALID_DATE_RANGE,
            message=message,
            field='end_date'
        )
        super().__init__(message)


# ==================== Result Types ====================

@dataclass(frozen=True)
class Interval:
    """Half-open span in minutes from midnight."""
    start: int
    end: int


@dataclass
class ScheduledSlot:
    task: Task
    scheduled_start: datetime
    scheduled_end: datetime
    scores: ScoreSet
    explanation: str
    is_fixed: bool = False

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def duration_minutes(self) -> int:
        return self.task.estimated_duration


@dataclass
class UnscheduledTask:
    task: Task
    reason: str
    scores: Optional[ScoreSet] = None


@dataclass
class ScheduleStats:
    total_tasks: int = 0
    scheduled_tasks: int = 0
    unscheduled_tasks: int = 0
    total_scheduled_minutes: int = 0
    deep_focus_minutes: int = 0
    available_minutes: int = 0
    utilization_percent: int = 0


@dataclass
class Schedule:
    date: date
    working_hours: WorkingHours
    slots: List[ScheduledSlot] = field(default_factory=list)
    unscheduled: List[UnscheduledTask] = field(default_factory=list)
    stats: ScheduleStats = field(default_factory=ScheduleStats)


class ChangeType(str, Enum):
    OVERRUN = "overrun"
    MOVED = "moved"
    UNSCHEDULED = "unscheduled"


@dataclass
class ScheduleChange:
    type: ChangeType
    task_id: str
    task_title: str
    explanation: str
    overrun_minutes: Optional[int] = None
    previous_start: Optional[datetime] = None
    new_start: Optional[datetime] = None


@dataclass
class RescheduleResult:
    schedule: Schedule
    changes: List[ScheduleChange]
    summary: str


# ==================== Slot Finder ====================

def find_available_slot(
    earliest_start: int,
    latest_end: int,
    duration: int,
    buffer: int,
    occupied: Sequence[Interval]
) -> Optional[Interval]:
    """
    Earliest interval of `duration` minutes that clears every occupied
    interval by `buffer` minutes on both sides.

    On a conflict the candidate jumps to the end of the conflicting interval
    plus the buffer, and the whole occupied set is checked again. Returns
    None when no start fits before `latest_end`.
    """
    candidate_start = earliest_start

    while candidate_start + duration <= latest_end:
        candidate_end = candidate_start + duration
        conflict = next(
            (
                slot for slot in occupied
                if candidate_start < slot.end + buffer and candidate_end > slot.start - buffer
            ),
            None
        )
        if conflict is None:
            return Interval(candidate_start, candidate_end)
        candidate_start = conflict.end + buffer

    return None


# ==================== Schedule Generator ====================

class _ScheduleBuilder:
    """Accumulates one call's placements; never shared between calls."""

    def __init__(self, target_date: date, preferences: UserPreferences, now: datetime):
        self.target_date = target_date
        self.preferences = preferences
        self.tz = preferences.tzinfo
        self.now = now
        self.slots: List[ScheduledSlot] = []
        self.unscheduled: List[UnscheduledTask] = []
        self.occupied: List[Interval] = []
        self.deep_focus_used = 0

    def occupy(self, task: Task, scores: ScoreSet, interval: Interval, is_fixed: bool) -> None:
        start = at_minute(self.target_date, interval.start, self.tz)
        end = at_minute(self.target_date, interval.end, self.tz)
        self.slots.append(ScheduledSlot(
            task=task,
            scheduled_start=start,
            scheduled_end=end,
            scores=scores,
            explanation=generate_explanation(task, scores, start, self.now),
            is_fixed=is_fixed
        ))
        self.occupied.append(interval)
        self.occupied.sort(key=lambda slot: slot.start)
        if task.is_deep_focus and not is_fixed:
            self.deep_focus_used += task.estimated_duration
        logger.debug(
            "Placed task %s at %s-%s (fixed=%s, score=%d)",
            task.id, minutes_to_time(interval.start), minutes_to_time(interval.end),
            is_fixed, scores.final_score
        )

    def reject(self, task: Task, scores: Optional[ScoreSet], reason: str) -> None:
        self.unscheduled.append(UnscheduledTask(task=task, reason=reason, scores=scores))
        logger.debug("Could not place task %s: %s", task.id, reason)

    def build(self, total_tasks: int) -> Schedule:
        hours = self.preferences.working_hours
        available = hours.total_minutes
        # Fixed slots count in full, so fixed work outside the working
        # window can take utilization past 100.
        scheduled_minutes = sum(slot.duration_minutes for slot in self.slots)

        stats = ScheduleStats(
            total_tasks=total_tasks,
            scheduled_tasks=len(self.slots),
            unscheduled_tasks=len(self.unscheduled),
            total_scheduled_minutes=scheduled_minutes,
            deep_focus_minutes=self.deep_focus_used,
            available_minutes=available,
            utilization_percent=round_half_up(scheduled_minutes / available * 100)
        )

        return Schedule(
            date=self.target_date,
            working_hours=WorkingHours(
                start=minutes_to_time(hours.start_minutes),
                end=minutes_to_time(hours.end_minutes)
            ),
            slots=sorted(self.slots, key=lambda slot: slot.scheduled_start),
            unscheduled=list(self.unscheduled),
            stats=stats
        )


def _as_local_date(day, tz: tzinfo) -> date:
    if isinstance(day, datetime):
        return to_local(day, tz).date()
    return day


def _placement_order(day_start: datetime):
    """Highest final score first, then earlier deadline; sort stability keeps input order."""
    def key(item: Tuple[Task, ScoreSet]):
        task, scores = item
        return (-scores.final_score, minutes_between(day_start, task.deadline))
    return key


def generate_daily_schedule(
    tasks: Sequence[Task],
    preferences: UserPreferences,
    target_date: date,
    now: datetime
) -> Schedule:
    """
    Build the schedule for one day.

    Args:
        tasks: Task snapshots owned by the caller
        preferences: Working hours, deep-focus budget, buffer and time zone
        target_date: Day to plan (a datetime is reduced to its local date)
        now: Current instant, used for every score

    Returns:
        Schedule with placed slots sorted by start, unscheduled tasks with
        reasons, and utilization stats.

    Raises:
        InvalidPreferencesError: preferences are malformed
    """
    ensure_valid_preferences(preferences)

    tz = preferences.tzinfo
    target_date = _as_local_date(target_date, tz)
    day_start = start_of_day(target_date, tz)
    hours = preferences.working_hours
    work_start = hours.start_minutes
    work_end = hours.end_minutes

    pending = [
        task for task in tasks
        if not task.is_completed and minutes_between(day_start, task.deadline) >= 0
    ]

    builder = _ScheduleBuilder(target_date, preferences, now)

    scored = []
    for task in pending:
        errors = validate_task(task)
        if errors:
            builder.reject(task, None, errors[0].message)
            continue
        scored.append((task, calculate_all_scores(task, now, preferences)))

    fixed = [item for item in scored if item[0].is_fixed]
    movable = [item for item in scored if not item[0].is_fixed]
    movable.sort(key=_placement_order(day_start))

    for task, scores in fixed:
        if task.scheduled_start is None:
            builder.reject(task, scores, REASON_FIXED_UNASSIGNED)
            continue
        local_start = to_local(task.scheduled_start, tz)
        if local_start.date() != target_date:
            builder.reject(task, scores, REASON_FIXED_UNASSIGNED)
            continue
        start_minutes = minute_of_day(local_start)
        builder.occupy(
            task, scores,
            Interval(start_minutes, start_minutes + task.estimated_duration),
            is_fixed=True
        )

    # Every movable search starts at the beginning of the working day. The
    # cursor is never advanced after a placement; later tasks move forward
    # only by colliding with the growing set of occupied intervals.
    cursor = work_start

    for task, scores in movable:
        if task.is_deep_focus:
            if builder.deep_focus_used + task.estimated_duration > preferences.max_deep_focus_minutes:
                builder.reject(
                    task, scores,
                    REASON_DEEP_FOCUS.format(limit=preferences.max_deep_focus_minutes)
                )
                continue

        interval = find_available_slot(
            cursor,
            work_end,
            task.estimated_duration,
            preferences.buffer_minutes,
            builder.occupied
        )
        if interval is None:
            builder.reject(task, scores, REASON_NO_SLOT)
            continue

        builder.occupy(task, scores, interval, is_fixed=False)

    schedule = builder.build(total_tasks=len(pending))
    logger.info(
        "Generated schedule for %s: %d placed, %d unscheduled, %d%% utilization",
        schedule.date.isoformat(), schedule.stats.scheduled_tasks,
        schedule.stats.unscheduled_tasks, schedule.stats.utilization_percent
    )
    return schedule


def generate_schedule_range(
    tasks: Sequence[Task],
    preferences: UserPreferences,
    start_date: date,
    end_date: date,
    now: datetime,
    max_days: int = MAX_RANGE_DAYS
) -> List[Schedule]:
    """One daily schedule per calendar day from start_date to end_date inclusive."""
    ensure_valid_preferences(preferences)

    tz = preferences.tzinfo
    start_date = _as_local_date(start_date, tz)
    end_date = _as_local_date(end_date, tz)

    if end_date < start_date:
        raise InvalidDateRangeError("end_date must not be before start_date")
    if (end_date - start_date).days > max_days:
        raise InvalidDateRangeError(f"Date range cannot exceed {max_days} days")

    schedules = []
    current = start_date
    while current <= end_date:
        schedules.append(generate_daily_schedule(tasks, preferences, current, now))
        current += timedelta(days=1)
    return schedules


# ==================== Rescheduler ====================

def _find_task(tasks: Sequence[Task], task_id) -> Optional[Task]:
    task_id = str(task_id)
    return next((task for task in tasks if task.id == task_id), None)


def _detect_overrun(task: Task, actual_duration: Optional[int]) -> Optional[ScheduleChange]:
    recorded = actual_duration if actual_duration is not None else task.actual_duration
    if not recorded:
        return None

    overrun = recorded - task.estimated_duration
    if overrun <= 0:
        return None

    logger.info("Task %s overran its estimate by %d minutes", task.id, overrun)
    return ScheduleChange(
        type=ChangeType.OVERRUN,
        task_id=task.id,
        task_title=task.title,
        overrun_minutes=overrun,
        explanation=(
            f'Task "{task.title}" took {overrun} minutes longer than estimated, '
            f'causing schedule adjustment.'
        )
    )


def _diff_placements(tasks: Sequence[Task], schedule: Schedule, tz: tzinfo) -> List[ScheduleChange]:
    """Compare each movable task's previous placement on the day with the new one."""
    placed: Dict[str, ScheduledSlot] = {slot.task_id: slot for slot in schedule.slots}
    dropped: Dict[str, UnscheduledTask] = {entry.task.id: entry for entry in schedule.unscheduled}
    changes = []

    for task in tasks:
        if task.is_fixed or task.is_completed or task.scheduled_start is None:
            continue
        previous = to_local(task.scheduled_start, tz).replace(second=0, microsecond=0)
        if previous.date() != schedule.date:
            continue

        slot = placed.get(task.id)
        if slot is not None and slot.scheduled_start != previous:
            changes.append(ScheduleChange(
                type=ChangeType.MOVED,
                task_id=task.id,
                task_title=task.title,
                previous_start=previous,
                new_start=slot.scheduled_start,
                explanation=(
                    f'Task "{task.title}" moved from {format_clock(previous)} '
                    f'to {format_clock(slot.scheduled_start)}.'
                )
            ))
        elif task.id in dropped:
            changes.append(ScheduleChange(
                type=ChangeType.UNSCHEDULED,
                task_id=task.id,
                task_title=task.title,
                previous_start=previous,
                explanation=(
                    f'Task "{task.title}" was removed from the schedule '
                    f'({dropped[task.id].reason}).'
                )
            ))

    return changes


def reschedule(
    tasks: Sequence[Task],
    preferences: UserPreferences,
    target_date: date,
    now: datetime,
    incomplete_task_id=None,
    actual_duration: Optional[int] = None
) -> RescheduleResult:
    """
    Regenerate the day after a task overran or was left incomplete.

    The schedule is rebuilt from scratch; the returned changes describe
    overruns and how previous placements on that day moved.
    """
    schedule = generate_daily_schedule(tasks, preferences, target_date, now)
    changes = []

    if incomplete_task_id is not None:
        task = _find_task(tasks, incomplete_task_id)
        if task is not None:
            overrun = _detect_overrun(task, actual_duration)
            if overrun is not None:
                changes.append(overrun)

    changes.extend(_diff_placements(tasks, schedule, preferences.tzinfo))

    if changes:
        summary = f"Schedule adjusted due to {len(changes)} change(s)."
    else:
        summary = "Schedule regenerated with current tasks."

    return RescheduleResult(schedule=schedule, changes=changes, summary=summary)


# ==================== Serialization ====================

def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


def task_summary_to_dict(task: Task) -> Dict:
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'priority': task.priority.value,
        'energy_level': task.energy_level.value,
        'flexibility': task.flexibility.value,
        'deadline': _iso(task.deadline),
        'estimated_duration': task.estimated_duration
    }


def slot_to_dict(slot: ScheduledSlot) -> Dict:
    return {
        'task_id': slot.task_id,
        'task': task_summary_to_dict(slot.task),
        'scheduled_start': _iso(slot.scheduled_start),
        'scheduled_end': _iso(slot.scheduled_end),
        'duration_minutes': slot.duration_minutes,
        'is_fixed': slot.is_fixed,
        'scores': slot.scores.to_dict(),
        'explanation': slot.explanation
    }


def schedule_to_dict(schedule: Schedule) -> Dict:
    """Convert a Schedule to a dictionary for JSON serialization."""
    stats = schedule.stats
    return {
        'date': schedule.date.isoformat(),
        'working_hours': {
            'start': schedule.working_hours.start,
            'end': schedule.working_hours.end
        },
        'slots': [slot_to_dict(slot) for slot in schedule.slots],
        'unscheduled': [
            {
                'task': task_summary_to_dict(entry.task),
                'reason': entry.reason,
                'scores': entry.scores.to_dict() if entry.scores else None
            }
            for entry in schedule.unscheduled
        ],
        'stats': {
            'total_tasks': stats.total_tasks,
            'scheduled_tasks': stats.scheduled_tasks,
            'unscheduled_tasks': stats.unscheduled_tasks,
            'total_scheduled_minutes': stats.total_scheduled_minutes,
            'deep_focus_minutes': stats.deep_focus_minutes,
            'available_minutes': stats.available_minutes,
            'utilization_percent': stats.utilization_percent
        }
    }


def change_to_dict(change: ScheduleChange) -> Dict:
    result = {
        'type': change.type.value,
        'task_id': change.task_id,
        'task_title': change.task_title,
        'explanation': change.explanation
    }
    if change.overrun_minutes is not None:
        result['overrun_minutes'] = change.overrun_minutes
    if change.previous_start is not None:
        result['previous_start'] = _iso(change.previous_start)
    if change.new_start is not None:
        result['new_start'] = _iso(change.new_start)
    return result


def reschedule_result_to_dict(result: RescheduleResult) -> Dict:
    return {
        'schedule': schedule_to_dict(result.schedule),
        'changes': [change_to_dict(change) for change in result.changes],
        'summary': result.summary
    }
