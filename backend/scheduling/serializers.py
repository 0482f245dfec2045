"""
Serializers for scheduling requests.

This module validates incoming payloads and converts them into the engine's
value types. Task and preference records arrive as plain JSON snapshots;
nothing here touches storage.
"""

from django.conf import settings
from django.utils import timezone
from rest_framework import serializers

from .scoring import (
    DEFAULT_BUFFER_MINUTES,
    DEFAULT_MAX_DEEP_FOCUS_MINUTES,
    DEFAULT_TIME_ZONE,
    DEFAULT_WORKING_HOURS,
    EnergyLevel,
    Flexibility,
    Priority,
    Task,
    UserPreferences,
    WorkingHours,
    to_local,
)


def scheduling_defaults() -> dict:
    """Preference defaults from the SCHEDULING setting."""
    configured = getattr(settings, 'SCHEDULING', {})
    start, end = configured.get('WORKING_HOURS', DEFAULT_WORKING_HOURS)
    return {
        'working_hours_start': start,
        'working_hours_end': end,
        'max_deep_focus_minutes': configured.get('MAX_DEEP_FOCUS_MINUTES', DEFAULT_MAX_DEEP_FOCUS_MINUTES),
        'buffer_minutes': configured.get('BUFFER_MINUTES', DEFAULT_BUFFER_MINUTES),
        'time_zone': configured.get('TIME_ZONE', DEFAULT_TIME_ZONE),
        'max_range_days': configured.get('MAX_RANGE_DAYS', 7),
    }


class TaskInputSerializer(serializers.Serializer):
    """
    Serializer for validating one task snapshot.

    Mirrors the task record kept by the storage layer; only the fields the
    engine reads are accepted.
    """

    id = serializers.CharField(max_length=64)
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(
        max_length=1000,
        required=False,
        allow_blank=True,
        default=''
    )
    estimated_duration = serializers.IntegerField(min_value=5, max_value=480)
    deadline = serializers.DateTimeField()
    priority = serializers.ChoiceField(
        choices=[choice.value for choice in Priority],
        default=Priority.MEDIUM.value
    )
    flexibility = serializers.ChoiceField(
        choices=[choice.value for choice in Flexibility],
        default=Flexibility.MOVABLE.value
    )
    energy_level = serializers.ChoiceField(
        choices=[choice.value for choice in EnergyLevel],
        default=EnergyLevel.LOW_FOCUS.value
    )
    is_completed = serializers.BooleanField(default=False)
    actual_duration = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    scheduled_start = serializers.DateTimeField(required=False, allow_null=True)
    scheduled_end = serializers.DateTimeField(required=False, allow_null=True)

    def validate_title(self, value):
        """Ensure title is not empty or just whitespace."""
        if not value or not value.strip():
            raise serializers.ValidationError("Title cannot be empty")
        return value.strip()


class WorkingHoursSerializer(serializers.Serializer):
    start = serializers.CharField(max_length=5, required=False)
    end = serializers.CharField(max_length=5, required=False)


class PreferencesSerializer(serializers.Serializer):
    """
    Scheduling preferences. Range and format checks happen in the engine so
    that API callers and direct callers get the same error codes.
    """

    working_hours = WorkingHoursSerializer(required=False)
    max_deep_focus_minutes = serializers.IntegerField(required=False)
    buffer_minutes = serializers.IntegerField(required=False)
    time_zone = serializers.CharField(max_length=64, required=False)


class ScheduleRequestSerializer(serializers.Serializer):
    tasks = TaskInputSerializer(many=True)
    preferences = PreferencesSerializer(required=False)
    date = serializers.DateField(required=False)
    now = serializers.DateTimeField(required=False)


class RegenerateRequestSerializer(ScheduleRequestSerializer):
    incomplete_task_id = serializers.CharField(max_length=64, required=False)
    actual_duration = serializers.IntegerField(min_value=1, required=False)


class ScheduleRangeRequestSerializer(serializers.Serializer):
    tasks = TaskInputSerializer(many=True)
    preferences = PreferencesSerializer(required=False)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    now = serializers.DateTimeField(required=False)


class ExplainRequestSerializer(serializers.Serializer):
    tasks = TaskInputSerializer(many=True)
    task_id = serializers.CharField(max_length=64)
    preferences = PreferencesSerializer(required=False)
    now = serializers.DateTimeField(required=False)


# ==================== Conversion ====================

def build_task(data: dict) -> Task:
    return Task(
        id=data['id'],
        title=data['title'],
        description=data.get('description', ''),
        estimated_duration=data['estimated_duration'],
        deadline=data['deadline'],
        priority=data.get('priority', Priority.MEDIUM.value),
        flexibility=data.get('flexibility', Flexibility.MOVABLE.value),
        energy_level=data.get('energy_level', EnergyLevel.LOW_FOCUS.value),
        is_completed=data.get('is_completed', False),
        actual_duration=data.get('actual_duration'),
        scheduled_start=data.get('scheduled_start'),
        scheduled_end=data.get('scheduled_end'),
    )


def build_preferences(data: dict) -> UserPreferences:
    """Fill missing preference fields from the configured defaults."""
    defaults = scheduling_defaults()
    hours = data.get('working_hours') or {}
    return UserPreferences(
        working_hours=WorkingHours(
            start=hours.get('start', defaults['working_hours_start']),
            end=hours.get('end', defaults['working_hours_end'])
        ),
        max_deep_focus_minutes=data.get('max_deep_focus_minutes', defaults['max_deep_focus_minutes']),
        buffer_minutes=data.get('buffer_minutes', defaults['buffer_minutes']),
        time_zone=data.get('time_zone', defaults['time_zone'])
    )


def resolve_now(validated_data: dict):
    return validated_data.get('now') or timezone.now()


def resolve_date(validated_data: dict, preferences: UserPreferences, now):
    """Requested date, or today in the user's zone."""
    if validated_data.get('date'):
        return validated_data['date']
    return to_local(now, preferences.tzinfo).date()
