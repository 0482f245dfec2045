"""
Score Calculator for the Day Planner scheduling engine.

This module turns a single task into three explainable sub-scores and a
weighted final score. Every function here is pure: the caller supplies the
task snapshot, the user's preferences and the current instant, and gets the
same integers back for the same inputs.

Scoring Formula:
---------------
final_score = (urgency_score * 0.40) +
              (importance_score * 0.35) +
              (risk_score * 0.25)

Each component is an integer between 0-100:
- Urgency: how much of the time left before the deadline the task consumes
- Importance: priority level plus bonuses for fixed-time and deep-focus work
- Risk: how little slack remains once working hours are taken into account

Overdue tasks saturate urgency and risk at 100 instead of being rejected.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# ==================== Error Codes ====================

class ErrorCode(Enum):
    """Machine-readable error codes for API responses."""
    SUCCESS = "SUCCESS"
    ERR_MISSING_FIELD = "ERR_MISSING_FIELD"
    ERR_INVALID_TIME = "ERR_INVALID_TIME"
    ERR_INVALID_WORKING_HOURS = "ERR_INVALID_WORKING_HOURS"
    ERR_INVALID_DEEP_FOCUS = "ERR_INVALID_DEEP_FOCUS"
    ERR_INVALID_BUFFER = "ERR_INVALID_BUFFER"
    ERR_INVALID_TIME_ZONE = "ERR_INVALID_TIME_ZONE"
    ERR_INVALID_DURATION = "ERR_INVALID_DURATION"
    ERR_INVALID_DATE_RANGE = "ERR_INVALID_DATE_RANGE"
    ERR_EMPTY_TASKS = "ERR_EMPTY_TASKS"
    ERR_TASK_NOT_FOUND = "ERR_TASK_NOT_FOUND"


@dataclass
class ValidationError:
    """Structured validation error with code and details."""
    code: ErrorCode
    message: str
    field: Optional[str] = None
    task_id: Optional[str] = None

    def to_dict(self) -> Dict:
        result = {
            'error_code': self.code.value,
            'message': self.message
        }
        if self.field:
            result['field'] = self.field
        if self.task_id is not None:
            result['task_id'] = self.task_id
        return result


class InvalidPreferencesError(ValueError):
    """Raised when user preferences are structurally invalid."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        super().__init__("; ".join(error.message for error in errors))


# ==================== Task Attributes ====================

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Flexibility(str, Enum):
    FIXED = "fixed"
    MOVABLE = "movable"


class EnergyLevel(str, Enum):
    LOW_FOCUS = "low-focus"
    DEEP_FOCUS = "deep-focus"


PRIORITY_VALUES = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
}

# Defaults applied when the preferences store has no value
DEFAULT_WORKING_HOURS = ("09:00", "17:00")
DEFAULT_MAX_DEEP_FOCUS_MINUTES = 240
DEFAULT_BUFFER_MINUTES = 15
DEFAULT_TIME_ZONE = "UTC"

MIN_DEEP_FOCUS_MINUTES = 30
MAX_DEEP_FOCUS_MINUTES = 720
MAX_BUFFER_MINUTES = 60
MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 480

TIME_OF_DAY_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


@dataclass
class ScoringWeights:
    """Fixed weights used to combine the three sub-scores."""
    urgency: float = 0.40
    importance: float = 0.35
    risk: float = 0.25

    def to_dict(self) -> Dict:
        return {
            'urgency': round(self.urgency, 3),
            'importance': round(self.importance, 3),
            'risk': round(self.risk, 3)
        }


WEIGHTS = ScoringWeights()


# ==================== Value Types ====================

@dataclass
class Task:
    """
    Read-only snapshot of a task as the engine sees it.

    Attributes:
        id: Opaque identifier, stable across calls
        title: Display title (not used for scoring)
        estimated_duration: Expected minutes of work, 5-480
        deadline: Instant by which the task must be done
        priority: low / medium / high
        flexibility: fixed tasks carry scheduled_start; movable ones get placed
        energy_level: low-focus or deep-focus
        is_completed: Completed tasks never enter scheduling
        actual_duration: Minutes actually spent, recorded after the fact
        scheduled_start: Existing placement, if any
        scheduled_end: Existing placement end, if any. Informational only;
            a fixed task always occupies estimated_duration from its start
    """
    id: str
    title: str
    estimated_duration: int
    deadline: datetime
    priority: Priority = Priority.MEDIUM
    flexibility: Flexibility = Flexibility.MOVABLE
    energy_level: EnergyLevel = EnergyLevel.LOW_FOCUS
    description: str = ""
    is_completed: bool = False
    actual_duration: Optional[int] = None
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None

    def __post_init__(self):
        """Accept plain strings for the enumerated attributes."""
        self.id = str(self.id)
        self.priority = Priority(self.priority)
        self.flexibility = Flexibility(self.flexibility)
        self.energy_level = EnergyLevel(self.energy_level)

    @property
    def is_fixed(self) -> bool:
        return self.flexibility == Flexibility.FIXED

    @property
    def is_deep_focus(self) -> bool:
        return self.energy_level == EnergyLevel.DEEP_FOCUS

    def minutes_until_deadline(self, now: datetime) -> int:
        """Whole minutes left before the deadline, never negative."""
        return max(0, math.floor(minutes_between(now, self.deadline)))

    def deadline_urgency(self, now: datetime) -> str:
        """Coarse label for how close the deadline is."""
        hours_remaining = self.minutes_until_deadline(now) / 60
        if hours_remaining <= 2:
            return "critical"
        if hours_remaining <= 24:
            return "urgent"
        if hours_remaining <= 72:
            return "moderate"
        return "relaxed"

    def can_meet_deadline(self, now: datetime) -> bool:
        return self.minutes_until_deadline(now) >= self.estimated_duration


@dataclass
class WorkingHours:
    """Daily working window as "HH:MM" 24-hour strings."""
    start: str = DEFAULT_WORKING_HOURS[0]
    end: str = DEFAULT_WORKING_HOURS[1]

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end)

    @property
    def total_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


@dataclass
class UserPreferences:
    """Per-user scheduling preferences."""
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    max_deep_focus_minutes: int = DEFAULT_MAX_DEEP_FOCUS_MINUTES
    buffer_minutes: int = DEFAULT_BUFFER_MINUTES
    time_zone: str = DEFAULT_TIME_ZONE

    @property
    def tzinfo(self) -> tzinfo:
        return ZoneInfo(self.time_zone)


@dataclass(frozen=True)
class ScoreSet:
    """The four integer scores computed for one task."""
    urgency_score: int
    importance_score: int
    risk_score: int
    final_score: int

    def to_dict(self) -> Dict:
        return {
            'urgency_score': self.urgency_score,
            'importance_score': self.importance_score,
            'risk_score': self.risk_score,
            'final_score': self.final_score
        }


# ==================== Time Helpers ====================

def parse_time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes from midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    """Convert minutes from midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    """Express an instant in the user's zone; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def minutes_between(start: datetime, end: datetime) -> float:
    """Signed minutes from start to end, measured on UTC so DST shifts don't count."""
    start = to_local(start, timezone.utc)
    end = to_local(end, timezone.utc)
    return (end - start).total_seconds() / 60


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def at_minute(day: date, minutes: int, tz: tzinfo) -> datetime:
    """Wall-clock instant `minutes` after midnight on `day`."""
    return start_of_day(day, tz) + timedelta(minutes=minutes)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return min(100, max(0, round_half_up(value)))


# ==================== Validation ====================

def validate_preferences(preferences: UserPreferences) -> List[ValidationError]:
    """
    Validate user preferences and return any errors found.

    The engine never repairs bad preferences; callers either surface these
    errors or go through ensure_valid_preferences().
    """
    errors = []
    hours = preferences.working_hours

    times_ok = True
    for field_name, value in (('working_hours.start', hours.start), ('working_hours.end', hours.end)):
        if not isinstance(value, str) or not TIME_OF_DAY_RE.match(value):
            times_ok = False
            errors.append(ValidationError(
                code=ErrorCode.ERR_INVALID_TIME,
                message=f"{field_name} must be in HH:MM format",
                field=field_name
            ))

    if times_ok and hours.end_minutes <= hours.start_minutes:
        errors.append(ValidationError(
            code=ErrorCode.ERR_INVALID_WORKING_HOURS,
            message="Working hours end must be after start",
            field='working_hours'
        ))

    deep_focus = preferences.max_deep_focus_minutes
    if not isinstance(deep_focus, int) or not MIN_DEEP_FOCUS_MINUTES <= deep_focus <= MAX_DEEP_FOCUS_MINUTES:
        errors.append(ValidationError(
            code=ErrorCode.ERR_INVALID_DEEP_FOCUS,
            message=(
                f"Deep focus time must be between {MIN_DEEP_FOCUS_MINUTES} "
                f"and {MAX_DEEP_FOCUS_MINUTES} minutes"
            ),
            field='max_deep_focus_minutes'
        ))

    buffer = preferences.buffer_minutes
    if not isinstance(buffer, int) or not 0 <= buffer <= MAX_BUFFER_MINUTES:
        errors.append(ValidationError(
            code=ErrorCode.ERR_INVALID_BUFFER,
            message=f"Buffer must be between 0 and {MAX_BUFFER_MINUTES} minutes",
            field='buffer_minutes'
        ))

    try:
        ZoneInfo(preferences.time_zone)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        errors.append(ValidationError(
            code=ErrorCode.ERR_INVALID_TIME_ZONE,
            message=f"Unknown time zone: {preferences.time_zone}",
            field='time_zone'
        ))

    return errors


def validate_task(task: Task) -> List[ValidationError]:
    """Check the task fields scoring divides by; other fields are trusted."""
    errors = []
    duration = task.estimated_duration
    if not isinstance(duration, int) or not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
        errors.append(ValidationError(
            code=ErrorCode.ERR_INVALID_DURATION,
            message=(
                f"Estimated duration must be between {MIN_DURATION_MINUTES} "
                f"and {MAX_DURATION_MINUTES} minutes"
            ),
            field='estimated_duration',
            task_id=task.id
        ))
    return errors


def ensure_valid_preferences(preferences: UserPreferences) -> None:
    errors = validate_preferences(preferences)
    if errors:
        raise InvalidPreferencesError(errors)


# ==================== Work-Time Calculator ====================

def calculate_available_work_minutes(
    start: datetime,
    end: datetime,
    working_hours: WorkingHours,
    tz: tzinfo = timezone.utc
) -> int:
    """
    Count working minutes between two instants.

    Walks calendar days from start to end. Each day contributes its overlap
    with the working window; the day holding `end` is clipped to the end's
    time of day. Seconds are ignored.
    """
    work_start = working_hours.start_minutes
    work_end = working_hours.end_minutes

    current = to_local(start, tz)
    end = to_local(end, tz)
    total = 0

    while current < end:
        current_minutes = minute_of_day(current)

        if current.date() == end.date():
            end_minutes = min(work_end, minute_of_day(end))
            total += max(0, end_minutes - max(work_start, current_minutes))
            break

        if current_minutes < work_end:
            total += work_end - max(work_start, current_minutes)

        current = start_of_day(current.date() + timedelta(days=1), tz)

    return total


# ==================== Score Calculator ====================

def calculate_urgency_score(task: Task, now: datetime) -> int:
    """
    Urgency from the share of the remaining time the task needs.

    Scoring Logic (time_ratio = duration / minutes remaining):
    - Overdue or ratio >= 1: 100
    - 0.5-1: 80-100
    - 0.25-0.5: 50-80
    - 0.10-0.25: 20-50
    - below 0.10: 0-20
    """
    minutes_remaining = max(0.0, minutes_between(now, task.deadline))
    if minutes_remaining <= 0:
        return 100

    time_ratio = task.estimated_duration / minutes_remaining

    if time_ratio >= 1:
        urgency = 100
    elif time_ratio >= 0.5:
        urgency = 80 + (time_ratio - 0.5) * 40
    elif time_ratio >= 0.25:
        urgency = 50 + (time_ratio - 0.25) * 120
    elif time_ratio >= 0.1:
        urgency = 20 + (time_ratio - 0.1) * 200
    else:
        urgency = time_ratio * 200

    return clamp_score(urgency)


def calculate_importance_score(task: Task) -> int:
    """
    Importance from priority (0/30/60), +30 for fixed, +10 for deep focus.
    """
    priority_value = PRIORITY_VALUES.get(task.priority, 2)
    priority_score = ((priority_value - 1) / 2) * 60
    flexibility_bonus = 30 if task.is_fixed else 0
    energy_bonus = 10 if task.is_deep_focus else 0
    return clamp_score(priority_score + flexibility_bonus + energy_bonus)


def calculate_risk_score(task: Task, now: datetime, preferences: UserPreferences) -> int:
    """
    Risk of missing the deadline if the task is delayed.

    Scoring Logic (buffer_ratio = spare working minutes / duration):
    - Cannot finish before the deadline: 100
    - below 0.5: 70-100
    - 0.5-1: 40-70
    - 1-2: 20-40
    - 2 and above: 0-20
    Fixed tasks get +10 since they cannot be shuffled around later.
    """
    minutes_remaining = max(0.0, minutes_between(now, task.deadline))
    duration = task.estimated_duration

    if minutes_remaining <= 0 or minutes_remaining < duration:
        return 100

    available = calculate_available_work_minutes(
        now, task.deadline, preferences.working_hours, preferences.tzinfo
    )
    if available < duration:
        return 100

    buffer_ratio = (available - duration) / duration

    if buffer_ratio < 0.5:
        risk = 100 - buffer_ratio * 60
    elif buffer_ratio < 1:
        risk = 70 - (buffer_ratio - 0.5) * 60
    elif buffer_ratio < 2:
        risk = 40 - (buffer_ratio - 1) * 20
    else:
        risk = max(0, 20 - (buffer_ratio - 2) * 10)

    if task.is_fixed:
        risk += 10

    return clamp_score(risk)


def combine_scores(urgency: int, importance: int, risk: int) -> int:
    weighted = (
        urgency * WEIGHTS.urgency +
        importance * WEIGHTS.importance +
        risk * WEIGHTS.risk
    )
    return clamp_score(weighted)


def calculate_all_scores(task: Task, now: datetime, preferences: UserPreferences) -> ScoreSet:
    """Compute every sub-score and the weighted final score for one task."""
    urgency = calculate_urgency_score(task, now)
    importance = calculate_importance_score(task)
    risk = calculate_risk_score(task, now, preferences)
    return ScoreSet(
        urgency_score=urgency,
        importance_score=importance,
        risk_score=risk,
        final_score=combine_scores(urgency, importance, risk)
    )
