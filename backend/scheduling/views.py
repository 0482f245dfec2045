"""
API Views for the Day Planner.

Thin, stateless endpoints around the scheduling engine: each request carries
the task snapshot and preferences, and the response carries the computed
schedule. Writing placements back to storage is the caller's job.
"""

import logging

from rest_framework import status
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema

from .engine import (
    InvalidDateRangeError,
    generate_daily_schedule,
    generate_schedule_range,
    reschedule,
    reschedule_result_to_dict,
    schedule_to_dict,
)
from .explanations import build_detailed_explanation
from .scoring import (
    WEIGHTS,
    ErrorCode,
    InvalidPreferencesError,
    calculate_all_scores,
    ensure_valid_preferences,
)
from .serializers import (
    ExplainRequestSerializer,
    RegenerateRequestSerializer,
    ScheduleRangeRequestSerializer,
    ScheduleRequestSerializer,
    build_preferences,
    build_task,
    resolve_date,
    resolve_now,
    scheduling_defaults,
)


logger = logging.getLogger(__name__)


# ============================================
# RATE LIMITING CLASSES
# ============================================

class ScheduleRateThrottle(AnonRateThrottle):
    """Rate limit for schedule endpoints - 30 requests per minute."""
    scope = 'schedule'
    rate = '30/min'


class ExplainRateThrottle(AnonRateThrottle):
    """Rate limit for explanation endpoint - 60 requests per minute."""
    scope = 'explain'
    rate = '60/min'


# ============================================
# RESPONSE HELPERS
# ============================================

def _error_response(code: ErrorCode, message: str, errors=None, status_code=status.HTTP_400_BAD_REQUEST) -> Response:
    logger.warning("Rejected scheduling request: %s (%s)", message, code.value)
    body = {
        'success': False,
        'error_code': code.value,
        'message': message
    }
    if errors is not None:
        body['errors'] = errors
    return Response(body, status=status_code)


def _invalid_input(serializer) -> Response:
    return _error_response(
        ErrorCode.ERR_MISSING_FIELD,
        'Invalid input data. Please check your request format.',
        errors=serializer.errors
    )


def _invalid_preferences(exc: InvalidPreferencesError) -> Response:
    return _error_response(
        exc.errors[0].code,
        'Invalid scheduling preferences.',
        errors=[error.to_dict() for error in exc.errors]
    )


# ============================================
# API ENDPOINTS
# ============================================

@extend_schema(
    summary="Generate a daily schedule",
    description="""
    Score the submitted tasks and place them into the working day.

    Fixed tasks keep their assigned time; movable tasks are placed greedily
    by final score. Tasks that do not fit are listed with a reason.
    """,
    request=ScheduleRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Schedule']
)
@api_view(['POST'])
@throttle_classes([ScheduleRateThrottle])
def generate_schedule(request: Request) -> Response:
    """
    Generate the schedule for one day.

    POST /api/schedule/

    Request Body:
    {
        "tasks": [...],
        "preferences": {                      // Optional, defaults from settings
            "working_hours": {"start": "09:00", "end": "17:00"},
            "max_deep_focus_minutes": 240,
            "buffer_minutes": 15,
            "time_zone": "UTC"
        },
        "date": "2026-10-19",                 // Optional, defaults to today
        "now": "2026-10-18T08:00:00Z"         // Optional, defaults to server time
    }
    """
    serializer = ScheduleRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid_input(serializer)

    data = serializer.validated_data
    tasks = [build_task(task) for task in data['tasks']]
    preferences = build_preferences(data.get('preferences', {}))
    now = resolve_now(data)

    try:
        ensure_valid_preferences(preferences)
        schedule = generate_daily_schedule(tasks, preferences, resolve_date(data, preferences, now), now)
    except InvalidPreferencesError as exc:
        return _invalid_preferences(exc)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'schedule': schedule_to_dict(schedule)
    })


@extend_schema(
    summary="Regenerate a schedule",
    description="""
    Rebuild the day after a task overran or was left incomplete, and list
    what changed relative to the tasks' previous placements.
    """,
    request=RegenerateRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Schedule']
)
@api_view(['POST'])
@throttle_classes([ScheduleRateThrottle])
def regenerate_schedule(request: Request) -> Response:
    """
    Regenerate the schedule and report changes.

    POST /api/schedule/regenerate/

    Request Body: same as /api/schedule/ plus
    {
        "incomplete_task_id": "42",           // Optional
        "actual_duration": 90                 // Optional, minutes
    }
    """
    serializer = RegenerateRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid_input(serializer)

    data = serializer.validated_data
    tasks = [build_task(task) for task in data['tasks']]
    preferences = build_preferences(data.get('preferences', {}))
    now = resolve_now(data)

    try:
        ensure_valid_preferences(preferences)
        result = reschedule(
            tasks,
            preferences,
            resolve_date(data, preferences, now),
            now,
            incomplete_task_id=data.get('incomplete_task_id'),
            actual_duration=data.get('actual_duration')
        )
    except InvalidPreferencesError as exc:
        return _invalid_preferences(exc)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'message': result.summary,
        **reschedule_result_to_dict(result)
    })


@extend_schema(
    summary="Generate schedules for a date range",
    description="Return one daily schedule per day between start_date and end_date inclusive.",
    request=ScheduleRangeRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Schedule']
)
@api_view(['POST'])
@throttle_classes([ScheduleRateThrottle])
def schedule_range(request: Request) -> Response:
    """
    Generate a schedule for each day in a range.

    POST /api/schedule/range/
    """
    serializer = ScheduleRangeRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid_input(serializer)

    data = serializer.validated_data
    tasks = [build_task(task) for task in data['tasks']]
    preferences = build_preferences(data.get('preferences', {}))
    now = resolve_now(data)

    try:
        schedules = generate_schedule_range(
            tasks,
            preferences,
            data['start_date'],
            data['end_date'],
            now,
            max_days=scheduling_defaults()['max_range_days']
        )
    except InvalidPreferencesError as exc:
        return _invalid_preferences(exc)
    except InvalidDateRangeError as exc:
        return _error_response(exc.error.code, exc.error.message, errors=[exc.error.to_dict()])

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'count': len(schedules),
        'schedules': [schedule_to_dict(schedule) for schedule in schedules]
    })


@extend_schema(
    summary="Explain a task's scores",
    description="Compute fresh scores for one task and return a detailed Markdown analysis.",
    request=ExplainRequestSerializer,
    responses={200: OpenApiTypes.OBJECT},
    tags=['Explanations']
)
@api_view(['POST'])
@throttle_classes([ExplainRateThrottle])
def explain_task(request: Request) -> Response:
    """
    Return scores and a detailed explanation for one task.

    POST /api/schedule/explain/
    """
    serializer = ExplainRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid_input(serializer)

    data = serializer.validated_data
    if not data['tasks']:
        return _error_response(
            ErrorCode.ERR_EMPTY_TASKS,
            'At least one task is required for an explanation'
        )

    tasks = [build_task(task) for task in data['tasks']]
    preferences = build_preferences(data.get('preferences', {}))
    now = resolve_now(data)

    task = next((task for task in tasks if task.id == data['task_id']), None)
    if task is None:
        return _error_response(
            ErrorCode.ERR_TASK_NOT_FOUND,
            'Task not found',
            status_code=status.HTTP_404_NOT_FOUND
        )

    try:
        ensure_valid_preferences(preferences)
    except InvalidPreferencesError as exc:
        return _invalid_preferences(exc)

    scores = calculate_all_scores(task, now, preferences)

    return Response({
        'success': True,
        'error_code': ErrorCode.SUCCESS.value,
        'task_id': task.id,
        'task_title': task.title,
        'deadline_urgency': task.deadline_urgency(now),
        'can_meet_deadline': task.can_meet_deadline(now),
        'scores': scores.to_dict(),
        'explanation': build_detailed_explanation(task, scores, now)
    })


@extend_schema(
    summary="API information",
    description="Get API information and available endpoints.",
    responses={200: OpenApiTypes.OBJECT},
    tags=['Info']
)
@api_view(['GET'])
def api_info(request: Request) -> Response:
    """
    Return API information and available endpoints.

    GET /api/
    """
    defaults = scheduling_defaults()
    return Response({
        'name': 'Day Planner API',
        'version': '1.0.0',
        'documentation': '/api/docs/',
        'features': [
            'Urgency, importance and risk scoring',
            'Greedy placement within working hours',
            'Buffers between scheduled blocks',
            'Daily deep-focus budget',
            'Human-readable explanations',
            'Rescheduling with change tracking',
        ],
        'endpoints': {
            'POST /api/schedule/': 'Generate a daily schedule',
            'POST /api/schedule/regenerate/': 'Regenerate a schedule after an overrun',
            'POST /api/schedule/range/': 'Generate schedules for up to a week',
            'POST /api/schedule/explain/': 'Explain one task\'s scores',
            'GET /api/docs/': 'Interactive API documentation',
            'GET /api/schema/': 'OpenAPI schema',
            'GET /api/': 'This info endpoint'
        },
        'weights': WEIGHTS.to_dict(),
        'defaults': {
            'working_hours': {
                'start': defaults['working_hours_start'],
                'end': defaults['working_hours_end']
            },
            'max_deep_focus_minutes': defaults['max_deep_focus_minutes'],
            'buffer_minutes': defaults['buffer_minutes'],
            'time_zone': defaults['time_zone']
        },
        'error_codes': {
            code.value: code.name for code in ErrorCode
        }
    })
