"""
Unit Tests for the Day Planner scheduling engine.

Covers the score calculator, working-time arithmetic, slot finding, daily
schedule generation, explanations, rescheduling and the API endpoints.
Every test pins `now` and the target date so results never depend on the
wall clock.
"""

import json
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from django.core.cache import cache
from django.test import SimpleTestCase
from rest_framework import status
from rest_framework.test import APITestCase

from .engine import (
    REASON_FIXED_UNASSIGNED,
    REASON_NO_SLOT,
    ChangeType,
    InvalidDateRangeError,
    Interval,
    find_available_slot,
    generate_daily_schedule,
    generate_schedule_range,
    reschedule,
    reschedule_result_to_dict,
    schedule_to_dict,
)
from .explanations import (
    build_detailed_explanation,
    format_clock,
    generate_explanation,
)
from .scoring import (
    ErrorCode,
    InvalidPreferencesError,
    ScoreSet,
    Task,
    UserPreferences,
    WorkingHours,
    calculate_all_scores,
    calculate_available_work_minutes,
    calculate_importance_score,
    calculate_risk_score,
    calculate_urgency_score,
    round_half_up,
    validate_preferences,
    validate_task,
)


# Monday, before the working day starts
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
TARGET = date(2026, 3, 2)


def at(hour, minute=0, day=TARGET):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def make_task(task_id='1', **overrides):
    values = {
        'id': task_id,
        'title': f'Task {task_id}',
        'estimated_duration': 60,
        'deadline': NOW + timedelta(days=2),
    }
    values.update(overrides)
    return Task(**values)


def make_preferences(**overrides):
    values = {
        'working_hours': WorkingHours('09:00', '17:00'),
        'max_deep_focus_minutes': 240,
        'buffer_minutes': 15,
        'time_zone': 'UTC',
    }
    values.update(overrides)
    return UserPreferences(**values)


class UrgencyScoreTests(SimpleTestCase):
    """Tests for the urgency scoring component."""

    def test_overdue_task_max_urgency(self):
        """Tasks past their deadline should have urgency 100."""
        task = make_task(deadline=NOW - timedelta(hours=1))
        self.assertEqual(calculate_urgency_score(task, NOW), 100)

    def test_not_enough_time_max_urgency(self):
        """A 60 minute task due in 30 minutes is maximally urgent."""
        task = make_task(estimated_duration=60, deadline=NOW + timedelta(minutes=30))
        self.assertEqual(calculate_urgency_score(task, NOW), 100)

    def test_breakpoints(self):
        """Each breakpoint of the piecewise curve maps to its lower bound."""
        deadline = NOW + timedelta(minutes=120)
        cases = [(60, 80), (30, 50), (12, 20)]
        for duration, expected in cases:
            task = make_task(estimated_duration=duration, deadline=deadline)
            self.assertEqual(calculate_urgency_score(task, NOW), expected, duration)

    def test_within_segments(self):
        """Values inside a segment are interpolated and rounded."""
        deadline = NOW + timedelta(minutes=120)
        self.assertEqual(calculate_urgency_score(make_task(estimated_duration=90, deadline=deadline), NOW), 90)
        self.assertEqual(calculate_urgency_score(make_task(estimated_duration=6, deadline=deadline), NOW), 10)

    def test_curve_is_continuous_below_breakpoint(self):
        """Just under a breakpoint the score stays next to the breakpoint value."""
        task = make_task(estimated_duration=59, deadline=NOW + timedelta(minutes=120))
        self.assertEqual(calculate_urgency_score(task, NOW), 79)

    def test_far_deadline_low_urgency(self):
        task = make_task(estimated_duration=10, deadline=NOW + timedelta(days=10))
        self.assertEqual(calculate_urgency_score(task, NOW), 0)


class ImportanceScoreTests(SimpleTestCase):
    """Tests for the importance scoring component."""

    def test_priority_levels(self):
        self.assertEqual(calculate_importance_score(make_task(priority='low')), 0)
        self.assertEqual(calculate_importance_score(make_task(priority='medium')), 30)
        self.assertEqual(calculate_importance_score(make_task(priority='high')), 60)

    def test_fixed_and_deep_focus_bonuses(self):
        task = make_task(priority='low', flexibility='fixed')
        self.assertEqual(calculate_importance_score(task), 30)

        task = make_task(priority='medium', energy_level='deep-focus')
        self.assertEqual(calculate_importance_score(task), 40)

    def test_maximum_importance(self):
        """High priority, fixed and deep focus adds up to 100."""
        task = make_task(priority='high', flexibility='fixed', energy_level='deep-focus')
        self.assertEqual(calculate_importance_score(task), 100)


class WorkTimeCalculatorTests(SimpleTestCase):
    """Tests for counting working minutes between two instants."""

    def setUp(self):
        self.hours = WorkingHours('09:00', '17:00')

    def test_same_day_full_window(self):
        self.assertEqual(calculate_available_work_minutes(at(8), at(17), self.hours), 480)

    def test_same_day_partial_window(self):
        self.assertEqual(calculate_available_work_minutes(at(10, 30), at(12, 15), self.hours), 105)

    def test_end_before_working_hours(self):
        self.assertEqual(calculate_available_work_minutes(at(6), at(8), self.hours), 0)

    def test_start_after_end(self):
        self.assertEqual(calculate_available_work_minutes(at(12), at(10), self.hours), 0)

    def test_start_after_work_end_spills_into_next_day(self):
        """Evening start contributes nothing; next morning is clipped to the end time."""
        tuesday = TARGET + timedelta(days=1)
        self.assertEqual(calculate_available_work_minutes(at(18), at(10, day=tuesday), self.hours), 60)

    def test_multiple_days(self):
        """Full days in between contribute the whole working window."""
        wednesday = TARGET + timedelta(days=2)
        self.assertEqual(calculate_available_work_minutes(at(8), at(12, day=wednesday), self.hours), 1140)

    def test_next_day_end_before_work_start(self):
        """Deadline the next morning before work starts adds nothing for that day."""
        tuesday = TARGET + timedelta(days=1)
        self.assertEqual(calculate_available_work_minutes(at(16), at(8, day=tuesday), self.hours), 60)

    def test_same_day_end_after_work_end(self):
        """The end's day is clipped to the working window end."""
        self.assertEqual(calculate_available_work_minutes(at(16), at(20), self.hours), 60)

    def test_respects_time_zone(self):
        """Working hours are read in the user's zone."""
        new_york = ZoneInfo('America/New_York')
        start = datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc)  # 08:00 EST
        end = datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)    # 17:00 EST
        self.assertEqual(calculate_available_work_minutes(start, end, self.hours, new_york), 480)
        self.assertEqual(calculate_available_work_minutes(start, end, self.hours), 240)


class RiskScoreTests(SimpleTestCase):
    """Tests for the risk scoring component."""

    def setUp(self):
        self.preferences = make_preferences()
        self.deadline = at(17)

    def test_overdue_max_risk(self):
        task = make_task(deadline=NOW - timedelta(minutes=5))
        self.assertEqual(calculate_risk_score(task, NOW, self.preferences), 100)

    def test_not_enough_time_max_risk(self):
        task = make_task(estimated_duration=60, deadline=NOW + timedelta(minutes=30))
        self.assertEqual(calculate_risk_score(task, NOW, self.preferences), 100)

    def test_not_enough_working_time_max_risk(self):
        """Wall-clock time suffices but working hours do not."""
        task = make_task(estimated_duration=200, deadline=at(12))
        self.assertEqual(calculate_risk_score(task, NOW, self.preferences), 100)

    def test_buffer_ratio_segments(self):
        """480 working minutes remain before 17:00."""
        cases = [(480, 100), (400, 88), (320, 70), (240, 40), (192, 30), (120, 10), (60, 0)]
        for duration, expected in cases:
            task = make_task(estimated_duration=duration, deadline=self.deadline)
            self.assertEqual(calculate_risk_score(task, NOW, self.preferences), expected, duration)

    def test_fixed_task_riskier(self):
        task = make_task(estimated_duration=240, deadline=self.deadline, flexibility='fixed')
        self.assertEqual(calculate_risk_score(task, NOW, self.preferences), 50)

    def test_fixed_bonus_clamped(self):
        task = make_task(estimated_duration=480, deadline=self.deadline, flexibility='fixed')
        self.assertEqual(calculate_risk_score(task, NOW, self.preferences), 100)


class AllScoresTests(SimpleTestCase):
    """Tests for the combined score set."""

    def setUp(self):
        self.preferences = make_preferences()

    def test_combined_scores(self):
        task = make_task(priority='high', deadline=at(17))
        scores = calculate_all_scores(task, NOW, self.preferences)
        self.assertEqual(scores, ScoreSet(urgency_score=22, importance_score=60, risk_score=0, final_score=30))

    def test_overdue_saturates_urgency_and_risk(self):
        task = make_task(estimated_duration=60, deadline=NOW + timedelta(minutes=30))
        scores = calculate_all_scores(task, NOW, self.preferences)
        self.assertEqual(scores.urgency_score, 100)
        self.assertEqual(scores.risk_score, 100)

    def test_weight_identity_and_bounds(self):
        """Final score is the rounded 40/35/25 blend for a spread of tasks."""
        tasks = [
            make_task(priority=priority, flexibility=flexibility, energy_level=energy,
                      estimated_duration=duration, deadline=NOW + timedelta(hours=hours))
            for priority in ('low', 'medium', 'high')
            for flexibility in ('fixed', 'movable')
            for energy in ('low-focus', 'deep-focus')
            for duration, hours in ((30, 1), (120, 9), (240, 50), (480, -2))
        ]
        for task in tasks:
            scores = calculate_all_scores(task, NOW, self.preferences)
            for value in (scores.urgency_score, scores.importance_score, scores.risk_score, scores.final_score):
                self.assertGreaterEqual(value, 0)
                self.assertLessEqual(value, 100)
            expected = round_half_up(
                0.4 * scores.urgency_score + 0.35 * scores.importance_score + 0.25 * scores.risk_score
            )
            self.assertEqual(scores.final_score, max(0, min(100, expected)))

    def test_deterministic(self):
        task = make_task(priority='high', energy_level='deep-focus')
        first = calculate_all_scores(task, NOW, self.preferences)
        second = calculate_all_scores(task, NOW, self.preferences)
        self.assertEqual(first, second)


class TaskHelperTests(SimpleTestCase):
    """Tests for the deadline helpers on Task."""

    def test_deadline_urgency_labels(self):
        cases = [(1, 'critical'), (2, 'critical'), (10, 'urgent'), (48, 'moderate'), (100, 'relaxed')]
        for hours, label in cases:
            task = make_task(deadline=NOW + timedelta(hours=hours))
            self.assertEqual(task.deadline_urgency(NOW), label)

    def test_minutes_until_deadline_never_negative(self):
        task = make_task(deadline=NOW - timedelta(hours=3))
        self.assertEqual(task.minutes_until_deadline(NOW), 0)
        self.assertFalse(task.can_meet_deadline(NOW))

    def test_can_meet_deadline(self):
        task = make_task(estimated_duration=60, deadline=NOW + timedelta(minutes=60))
        self.assertTrue(task.can_meet_deadline(NOW))

    def test_string_attributes_coerced(self):
        task = make_task(task_id=7, flexibility='fixed', energy_level='deep-focus')
        self.assertEqual(task.id, '7')
        self.assertTrue(task.is_fixed)
        self.assertTrue(task.is_deep_focus)


class PreferenceValidationTests(SimpleTestCase):
    """Tests for preference validation."""

    def codes(self, preferences):
        return {error.code for error in validate_preferences(preferences)}

    def test_defaults_are_valid(self):
        self.assertEqual(validate_preferences(UserPreferences()), [])

    def test_end_must_follow_start(self):
        preferences = make_preferences(working_hours=WorkingHours('17:00', '09:00'))
        self.assertEqual(self.codes(preferences), {ErrorCode.ERR_INVALID_WORKING_HOURS})

        preferences = make_preferences(working_hours=WorkingHours('09:00', '09:00'))
        self.assertEqual(self.codes(preferences), {ErrorCode.ERR_INVALID_WORKING_HOURS})

    def test_time_format(self):
        preferences = make_preferences(working_hours=WorkingHours('9am', '17:00'))
        self.assertEqual(self.codes(preferences), {ErrorCode.ERR_INVALID_TIME})

    def test_ranges(self):
        self.assertIn(ErrorCode.ERR_INVALID_DEEP_FOCUS, self.codes(make_preferences(max_deep_focus_minutes=10)))
        self.assertIn(ErrorCode.ERR_INVALID_DEEP_FOCUS, self.codes(make_preferences(max_deep_focus_minutes=721)))
        self.assertIn(ErrorCode.ERR_INVALID_BUFFER, self.codes(make_preferences(buffer_minutes=61)))
        self.assertIn(ErrorCode.ERR_INVALID_BUFFER, self.codes(make_preferences(buffer_minutes=-1)))

    def test_unknown_time_zone(self):
        self.assertEqual(self.codes(make_preferences(time_zone='Mars/Olympus')), {ErrorCode.ERR_INVALID_TIME_ZONE})

    def test_generator_rejects_invalid_preferences(self):
        preferences = make_preferences(working_hours=WorkingHours('17:00', '09:00'))
        with self.assertRaises(InvalidPreferencesError) as ctx:
            generate_daily_schedule([make_task()], preferences, TARGET, NOW)
        self.assertEqual(ctx.exception.errors[0].code, ErrorCode.ERR_INVALID_WORKING_HOURS)


class TaskValidationTests(SimpleTestCase):
    """Tests for per-task checks done by the engine."""

    def test_duration_bounds(self):
        self.assertEqual(validate_task(make_task(estimated_duration=5)), [])
        self.assertEqual(validate_task(make_task(estimated_duration=480)), [])

        for duration in (0, 4, 481, -30):
            errors = validate_task(make_task('bad', estimated_duration=duration))
            self.assertEqual(len(errors), 1, duration)
            self.assertEqual(errors[0].code, ErrorCode.ERR_INVALID_DURATION)
            self.assertEqual(errors[0].task_id, 'bad')
            self.assertEqual(errors[0].to_dict()['task_id'], 'bad')

    def test_bad_task_does_not_abort_schedule(self):
        """An out-of-range task is reported while the rest of the day is built."""
        tasks = [make_task('good'), make_task('bad', estimated_duration=0)]

        schedule = generate_daily_schedule(tasks, make_preferences(), TARGET, NOW)

        self.assertEqual([slot.task_id for slot in schedule.slots], ['good'])
        self.assertEqual(len(schedule.unscheduled), 1)
        entry = schedule.unscheduled[0]
        self.assertEqual(entry.task.id, 'bad')
        self.assertEqual(entry.reason, 'Estimated duration must be between 5 and 480 minutes')
        self.assertIsNone(entry.scores)
        self.assertEqual(schedule.stats.total_tasks, 2)

        data = schedule_to_dict(schedule)
        self.assertIsNone(data['unscheduled'][0]['scores'])


class SlotFinderTests(SimpleTestCase):
    """Tests for finding the earliest feasible interval."""

    def test_empty_day(self):
        self.assertEqual(find_available_slot(540, 1020, 30, 15, []), Interval(540, 570))

    def test_fits_before_occupied_with_buffer(self):
        self.assertEqual(find_available_slot(540, 1020, 30, 15, [Interval(600, 660)]), Interval(540, 570))

    def test_buffer_pushes_past_occupied(self):
        """A 60 minute task would end inside the buffer, so it goes after the block."""
        self.assertEqual(find_available_slot(540, 1020, 60, 15, [Interval(600, 660)]), Interval(675, 735))

    def test_rescans_after_advancing(self):
        """After jumping past one interval the candidate is checked against all again."""
        occupied = [Interval(540, 600), Interval(610, 700)]
        self.assertEqual(find_available_slot(540, 1020, 30, 10, occupied), Interval(710, 740))

    def test_unsorted_occupied(self):
        occupied = [Interval(700, 760), Interval(540, 600)]
        self.assertEqual(find_available_slot(540, 1020, 60, 10, occupied), Interval(610, 670))

    def test_exact_fit_at_end_of_day(self):
        self.assertEqual(find_available_slot(540, 1020, 30, 0, [Interval(540, 990)]), Interval(990, 1020))

    def test_no_room(self):
        self.assertIsNone(find_available_slot(540, 600, 90, 0, []))
        self.assertIsNone(find_available_slot(540, 1020, 60, 15, [Interval(540, 1000)]))


class ScheduleGeneratorTests(SimpleTestCase):
    """Tests for daily schedule generation."""

    def setUp(self):
        self.preferences = make_preferences()

    def assert_no_double_booking(self, schedule, buffer):
        slots = schedule.slots
        for i, first in enumerate(slots):
            for second in slots[i + 1:]:
                overlaps = (
                    first.scheduled_start < second.scheduled_end + timedelta(minutes=buffer)
                    and second.scheduled_start < first.scheduled_end + timedelta(minutes=buffer)
                )
                self.assertFalse(overlaps, f"{first.task_id} overlaps {second.task_id}")

    def test_movable_placed_before_fixed_block(self):
        """A 30 minute task fits at 09:00 ahead of a 10:00 fixed meeting."""
        fixed = make_task('meeting', flexibility='fixed', scheduled_start=at(10),
                          deadline=NOW + timedelta(days=1))
        movable = make_task('report', estimated_duration=30, priority='high',
                            deadline=NOW + timedelta(days=1))

        schedule = generate_daily_schedule([fixed, movable], self.preferences, TARGET, NOW)

        self.assertEqual([slot.task_id for slot in schedule.slots], ['report', 'meeting'])
        report, meeting = schedule.slots
        self.assertEqual((report.scheduled_start, report.scheduled_end), (at(9), at(9, 30)))
        self.assertEqual((meeting.scheduled_start, meeting.scheduled_end), (at(10), at(11)))
        self.assertTrue(meeting.is_fixed)
        self.assertFalse(report.is_fixed)
        self.assertEqual(schedule.unscheduled, [])

    def test_deep_focus_capacity(self):
        preferences = make_preferences(max_deep_focus_minutes=60)
        tasks = [
            make_task('a', energy_level='deep-focus'),
            make_task('b', energy_level='deep-focus'),
        ]

        schedule = generate_daily_schedule(tasks, preferences, TARGET, NOW)

        self.assertEqual([slot.task_id for slot in schedule.slots], ['a'])
        self.assertEqual(len(schedule.unscheduled), 1)
        self.assertEqual(schedule.unscheduled[0].task.id, 'b')
        self.assertIn('deep-focus capacity', schedule.unscheduled[0].reason)
        self.assertEqual(schedule.stats.deep_focus_minutes, 60)

    def test_overflow_reported_unscheduled(self):
        """Tasks that do not fit are kept with a reason and utilization tops out at 100."""
        preferences = make_preferences(buffer_minutes=0)
        tasks = [make_task(str(i), estimated_duration=120) for i in range(5)]

        schedule = generate_daily_schedule(tasks, preferences, TARGET, NOW)

        self.assertEqual(len(schedule.slots), 4)
        self.assertEqual([entry.task.id for entry in schedule.unscheduled], ['4'])
        self.assertEqual(schedule.unscheduled[0].reason, REASON_NO_SLOT)
        self.assertEqual(schedule.stats.utilization_percent, 100)
        self.assertEqual(schedule.slots[-1].scheduled_end, at(17))

    def test_higher_score_placed_first(self):
        tasks = [make_task('low', priority='low'), make_task('high', priority='high')]

        schedule = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)

        self.assertEqual(schedule.slots[0].task_id, 'high')
        self.assertEqual(schedule.slots[0].scheduled_start, at(9))
        self.assertEqual(schedule.slots[1].scheduled_start, at(10, 15))

    def test_ties_broken_by_earlier_deadline(self):
        later = make_task('later', estimated_duration=10, deadline=NOW + timedelta(days=11))
        sooner = make_task('sooner', estimated_duration=10, deadline=NOW + timedelta(days=10))
        self.assertEqual(
            calculate_all_scores(later, NOW, self.preferences).final_score,
            calculate_all_scores(sooner, NOW, self.preferences).final_score
        )

        schedule = generate_daily_schedule([later, sooner], self.preferences, TARGET, NOW)

        self.assertEqual([slot.task_id for slot in schedule.slots], ['sooner', 'later'])

    def test_ties_keep_input_order(self):
        tasks = [make_task('first'), make_task('second')]
        schedule = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)
        self.assertEqual([slot.task_id for slot in schedule.slots], ['first', 'second'])

    def test_cursor_stays_at_start_of_day(self):
        """A lower-scored short task can still land before a higher-scored one."""
        preferences = make_preferences(buffer_minutes=0)
        fixed = make_task('fixed', flexibility='fixed', scheduled_start=at(9, 30))
        big = make_task('big', priority='high')
        small = make_task('small', priority='low', estimated_duration=30)

        schedule = generate_daily_schedule([fixed, big, small], preferences, TARGET, NOW)

        starts = {slot.task_id: slot.scheduled_start for slot in schedule.slots}
        self.assertEqual(starts['big'], at(10, 30))
        self.assertEqual(starts['small'], at(9))

    def test_completed_and_expired_tasks_excluded(self):
        tasks = [
            make_task('done', is_completed=True),
            make_task('expired', deadline=at(12, day=TARGET - timedelta(days=1))),
            make_task('open'),
        ]

        schedule = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)

        self.assertEqual([slot.task_id for slot in schedule.slots], ['open'])
        self.assertEqual(schedule.unscheduled, [])
        self.assertEqual(schedule.stats.total_tasks, 1)

    def test_overdue_today_still_placed(self):
        """A deadline earlier today is overdue but still eligible."""
        now = at(12)
        task = make_task('late', deadline=at(10))

        schedule = generate_daily_schedule([task], self.preferences, TARGET, now)

        self.assertEqual(len(schedule.slots), 1)
        self.assertEqual(schedule.slots[0].scores.urgency_score, 100)
        self.assertEqual(schedule.slots[0].scores.risk_score, 100)

    def test_fixed_without_time_on_day_reported(self):
        tasks = [
            make_task('unassigned', flexibility='fixed'),
            make_task('tomorrow', flexibility='fixed', scheduled_start=at(10, day=TARGET + timedelta(days=1))),
        ]

        schedule = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)

        self.assertEqual(schedule.slots, [])
        self.assertEqual(
            [(entry.task.id, entry.reason) for entry in schedule.unscheduled],
            [('unassigned', REASON_FIXED_UNASSIGNED), ('tomorrow', REASON_FIXED_UNASSIGNED)]
        )

    def test_fixed_task_occupies_estimated_duration(self):
        """A stale scheduled_end does not shorten the fixed block."""
        fixed = make_task('meeting', flexibility='fixed', scheduled_start=at(10), scheduled_end=at(10, 30))

        schedule = generate_daily_schedule([fixed], self.preferences, TARGET, NOW)

        self.assertEqual(schedule.slots[0].scheduled_end, at(11))

    def test_utilization_counts_fixed_work_outside_hours(self):
        """Fixed minutes count in full, even beyond the working window."""
        tasks = [
            make_task('night', flexibility='fixed', estimated_duration=480, scheduled_start=at(0)),
            make_task('evening', flexibility='fixed', estimated_duration=480, scheduled_start=at(16)),
        ]

        schedule = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)

        self.assertEqual(schedule.stats.total_scheduled_minutes, 960)
        self.assertEqual(schedule.stats.utilization_percent, 200)

    def test_buffer_of_zero_honoured(self):
        preferences = make_preferences(buffer_minutes=0)
        schedule = generate_daily_schedule([make_task('a'), make_task('b')], preferences, TARGET, NOW)
        self.assertEqual([slot.scheduled_start for slot in schedule.slots], [at(9), at(10)])

    def test_properties_on_mixed_day(self):
        """Conservation, no double-booking, deep-focus cap and utilization on one busy day."""
        preferences = make_preferences(max_deep_focus_minutes=120, buffer_minutes=10)
        tasks = [
            make_task('standup', flexibility='fixed', estimated_duration=15, scheduled_start=at(9, 30)),
            make_task('lunch', flexibility='fixed', estimated_duration=60, scheduled_start=at(12)),
            make_task('design', energy_level='deep-focus', estimated_duration=90, priority='high'),
            make_task('review', energy_level='deep-focus', estimated_duration=60),
            make_task('email', estimated_duration=20, priority='low'),
            make_task('budget', estimated_duration=180, deadline=at(17)),
            make_task('planning', estimated_duration=120, priority='high'),
            make_task('cleanup', estimated_duration=240, priority='low'),
            make_task('done', is_completed=True),
        ]

        schedule = generate_daily_schedule(tasks, preferences, TARGET, NOW)

        placed = [slot.task_id for slot in schedule.slots]
        dropped = [entry.task.id for entry in schedule.unscheduled]
        eligible = [task.id for task in tasks if not task.is_completed]
        self.assertCountEqual(placed + dropped, eligible)
        self.assertEqual(len(set(placed) & set(dropped)), 0)

        self.assert_no_double_booking(schedule, preferences.buffer_minutes)

        deep_minutes = sum(
            slot.duration_minutes for slot in schedule.slots
            if slot.task.is_deep_focus and not slot.is_fixed
        )
        self.assertLessEqual(deep_minutes, preferences.max_deep_focus_minutes)
        self.assertEqual(deep_minutes, schedule.stats.deep_focus_minutes)

        scheduled_minutes = sum(slot.duration_minutes for slot in schedule.slots)
        self.assertEqual(schedule.stats.total_scheduled_minutes, scheduled_minutes)
        self.assertEqual(schedule.stats.utilization_percent, round_half_up(scheduled_minutes / 480 * 100))

        starts = [slot.scheduled_start for slot in schedule.slots]
        self.assertEqual(starts, sorted(starts))
        for slot in schedule.slots:
            if not slot.is_fixed:
                self.assertGreaterEqual(slot.scheduled_start, at(9))
                self.assertLessEqual(slot.scheduled_end, at(17))

    def test_deterministic(self):
        tasks = [make_task(str(i), estimated_duration=30 + i * 10, priority=('low', 'high')[i % 2]) for i in range(6)]
        first = schedule_to_dict(generate_daily_schedule(tasks, self.preferences, TARGET, NOW))
        second = schedule_to_dict(generate_daily_schedule(tasks, self.preferences, TARGET, NOW))
        self.assertEqual(first, second)

    def test_time_zone_placement(self):
        """Working hours apply in the user's zone."""
        preferences = make_preferences(time_zone='America/New_York')
        fixed = make_task('meeting', flexibility='fixed',
                          scheduled_start=datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc))
        movable = make_task('report', estimated_duration=30, priority='high')

        schedule = generate_daily_schedule([fixed, movable], preferences, TARGET, NOW)

        starts = {slot.task_id: slot.scheduled_start for slot in schedule.slots}
        self.assertEqual(starts['report'], datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc))
        self.assertEqual(starts['meeting'], datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc))

    def test_serialization(self):
        schedule = generate_daily_schedule([make_task('a', priority='high')], self.preferences, TARGET, NOW)
        data = schedule_to_dict(schedule)

        self.assertEqual(data['date'], '2026-03-02')
        self.assertEqual(data['working_hours'], {'start': '09:00', 'end': '17:00'})
        slot = data['slots'][0]
        self.assertEqual(slot['task_id'], 'a')
        self.assertEqual(slot['scheduled_start'], '2026-03-02T09:00:00+00:00')
        self.assertEqual(slot['scheduled_end'], '2026-03-02T10:00:00+00:00')
        self.assertEqual(set(slot['scores']), {'urgency_score', 'importance_score', 'risk_score', 'final_score'})
        self.assertEqual(data['stats']['scheduled_tasks'], 1)
        self.assertEqual(data['stats']['utilization_percent'], 13)


class ScheduleRangeTests(SimpleTestCase):
    """Tests for multi-day schedule generation."""

    def setUp(self):
        self.preferences = make_preferences()

    def test_one_schedule_per_day(self):
        schedules = generate_schedule_range(
            [make_task(deadline=NOW + timedelta(days=5))], self.preferences,
            TARGET, TARGET + timedelta(days=2), NOW
        )
        self.assertEqual([s.date for s in schedules], [TARGET + timedelta(days=i) for i in range(3)])

    def test_full_week_allowed(self):
        schedules = generate_schedule_range([], self.preferences, TARGET, TARGET + timedelta(days=7), NOW)
        self.assertEqual(len(schedules), 8)

    def test_range_limits(self):
        with self.assertRaises(InvalidDateRangeError):
            generate_schedule_range([], self.preferences, TARGET, TARGET + timedelta(days=8), NOW)
        with self.assertRaises(InvalidDateRangeError):
            generate_schedule_range([], self.preferences, TARGET, TARGET - timedelta(days=1), NOW)


class ExplanationTests(SimpleTestCase):
    """Tests for the placement rationale."""

    def test_format_clock(self):
        self.assertEqual(format_clock(at(9, 5)), '09:05 AM')
        self.assertEqual(format_clock(at(0)), '12:00 AM')
        self.assertEqual(format_clock(at(12, 30)), '12:30 PM')
        self.assertEqual(format_clock(at(17)), '05:00 PM')

    def test_full_explanation(self):
        task = make_task(priority='high', estimated_duration=30, deadline=NOW + timedelta(hours=5))
        scores = ScoreSet(urgency_score=50, importance_score=60, risk_score=30, final_score=49)

        explanation = generate_explanation(task, scores, at(9), NOW)

        self.assertEqual(
            explanation,
            'Scheduled at 09:00 AM–09:30 AM because the task has high priority, deadline in 5 hours. '
            '\n\n📊 Scheduling Score: 49/100 • Urgency: 50/100 • Importance: 60/100 • Risk: 30/100'
        )

    def test_reason_order(self):
        task = make_task(priority='low', flexibility='fixed', energy_level='deep-focus',
                         deadline=NOW + timedelta(hours=72))
        scores = ScoreSet(urgency_score=10, importance_score=40, risk_score=80, final_score=38)

        explanation = generate_explanation(task, scores, at(9), NOW)

        self.assertIn(
            'because the task has deadline in 3 days, requires deep focus, '
            'has fixed time constraint, high risk of missing deadline if delayed.',
            explanation
        )

    def test_limited_flexibility_and_moderate_risk(self):
        task = make_task(priority='medium', deadline=NOW + timedelta(hours=30))
        scores = ScoreSet(urgency_score=90, importance_score=80, risk_score=50, final_score=77)

        explanation = generate_explanation(task, scores, at(9), NOW)

        self.assertIn('medium priority, deadline in 1 day, limited scheduling flexibility, '
                      'moderate deadline risk.', explanation)

    def test_passed_deadline(self):
        task = make_task(deadline=NOW - timedelta(hours=2))
        scores = ScoreSet(urgency_score=100, importance_score=30, risk_score=100, final_score=76)
        self.assertIn('a deadline that has already passed', generate_explanation(task, scores, at(9), NOW))

    def test_deadline_within_the_hour(self):
        """A deadline minutes away is still in the future."""
        preferences = make_preferences()
        task = make_task(estimated_duration=10, deadline=NOW + timedelta(minutes=20))
        scores = calculate_all_scores(task, NOW, preferences)

        explanation = generate_explanation(task, scores, at(9), NOW)

        self.assertNotIn('already passed', explanation)
        self.assertIn('deadline in 20 minutes', explanation)

        task = make_task(estimated_duration=10, deadline=NOW + timedelta(seconds=30))
        self.assertIn('deadline in 1 minute,', generate_explanation(task, scores, at(9), NOW))

    def test_slots_carry_explanations(self):
        schedule = generate_daily_schedule([make_task('a')], make_preferences(), TARGET, NOW)
        self.assertTrue(schedule.slots[0].explanation.startswith('Scheduled at 09:00 AM–10:00 AM'))


class DetailedExplanationTests(SimpleTestCase):
    """Tests for the Markdown analysis of one task."""

    def test_breakdown_table(self):
        task = make_task(title='Quarterly report', deadline=NOW + timedelta(hours=10))
        scores = ScoreSet(urgency_score=80, importance_score=60, risk_score=40, final_score=63)

        report = build_detailed_explanation(task, scores, NOW)

        self.assertTrue(report.startswith('## Scheduling Analysis for "Quarterly report"'))
        self.assertIn('| Urgency | 80/100 | 40% | 32 |', report)
        self.assertIn('| Importance | 60/100 | 35% | 21 |', report)
        self.assertIn('| Risk | 40/100 | 25% | 10 |', report)
        self.assertIn('| **Final** | **63/100** | | |', report)
        self.assertIn('Only 10 hours remaining until deadline.', report)
        self.assertIn('representing 10% of remaining time.', report)
        self.assertIn('📋 **Schedule today**', report)

    def test_overdue_and_bonuses(self):
        task = make_task(flexibility='fixed', energy_level='deep-focus', deadline=NOW - timedelta(hours=1))
        scores = ScoreSet(urgency_score=100, importance_score=70, risk_score=100, final_score=89)

        report = build_detailed_explanation(task, scores, NOW)

        self.assertIn('**OVERDUE**', report)
        self.assertIn('- Flexibility: **fixed** (+30 importance bonus)', report)
        self.assertIn('- Energy Requirement: **deep-focus** (+10 importance bonus)', report)
        self.assertIn('**High Risk**', report)
        self.assertIn('📌 **Schedule immediately**', report)

    def test_comfortable_low_risk(self):
        task = make_task(priority='low', deadline=NOW + timedelta(days=6))
        scores = ScoreSet(urgency_score=1, importance_score=0, risk_score=0, final_score=0)

        report = build_detailed_explanation(task, scores, NOW)

        self.assertIn('🟢 **Comfortable**: 6 days remaining until deadline.', report)
        self.assertIn('**Low Risk**', report)
        self.assertIn('**Flexible scheduling**', report)
        self.assertIn('- Priority Level: **LOW**', report)

    def test_urgent_within_three_days(self):
        task = make_task(deadline=NOW + timedelta(hours=72))
        scores = ScoreSet(urgency_score=5, importance_score=30, risk_score=50, final_score=25)
        self.assertIn('🟠 **Urgent**: 3 days remaining', build_detailed_explanation(task, scores, NOW))

    def test_deadline_within_the_hour(self):
        task = make_task(estimated_duration=10, deadline=NOW + timedelta(minutes=20))
        scores = ScoreSet(urgency_score=80, importance_score=30, risk_score=100, final_score=68)

        report = build_detailed_explanation(task, scores, NOW)

        self.assertNotIn('OVERDUE', report)
        self.assertIn('🔴 **Critical**: Only 20 minutes remaining until deadline.', report)
        self.assertIn('representing 50% of remaining time.', report)


class ReschedulerTests(SimpleTestCase):
    """Tests for regenerating a schedule after an event."""

    def setUp(self):
        self.preferences = make_preferences()

    def test_overrun_recorded(self):
        task = make_task('slow', title='Write report', estimated_duration=60)

        result = reschedule([task], self.preferences, TARGET, NOW,
                            incomplete_task_id='slow', actual_duration=90)

        self.assertEqual(len(result.changes), 1)
        change = result.changes[0]
        self.assertEqual(change.type, ChangeType.OVERRUN)
        self.assertEqual(change.overrun_minutes, 30)
        self.assertEqual(
            change.explanation,
            'Task "Write report" took 30 minutes longer than estimated, causing schedule adjustment.'
        )
        self.assertEqual(result.summary, 'Schedule adjusted due to 1 change(s).')

    def test_no_overrun(self):
        task = make_task('quick', estimated_duration=60)
        result = reschedule([task], self.preferences, TARGET, NOW,
                            incomplete_task_id='quick', actual_duration=45)
        self.assertEqual(result.changes, [])
        self.assertEqual(result.summary, 'Schedule regenerated with current tasks.')

    def test_recorded_actual_duration_used(self):
        task = make_task('slow', estimated_duration=60, actual_duration=75)
        result = reschedule([task], self.preferences, TARGET, NOW, incomplete_task_id='slow')
        self.assertEqual(result.changes[0].overrun_minutes, 15)

    def test_unknown_task_ignored(self):
        result = reschedule([make_task('a')], self.preferences, TARGET, NOW,
                            incomplete_task_id='missing', actual_duration=500)
        self.assertEqual(result.changes, [])

    def test_full_regeneration(self):
        tasks = [make_task('a'), make_task('b', priority='high')]
        result = reschedule(tasks, self.preferences, TARGET, NOW)
        expected = generate_daily_schedule(tasks, self.preferences, TARGET, NOW)
        self.assertEqual(schedule_to_dict(result.schedule), schedule_to_dict(expected))

    def test_moved_task_reported(self):
        """A new higher-priority task takes 09:00 and pushes the old placement back."""
        existing = make_task('existing', title='Inbox', scheduled_start=at(9), scheduled_end=at(10))
        urgent = make_task('urgent', priority='high')

        result = reschedule([existing, urgent], self.preferences, TARGET, NOW)

        self.assertEqual(len(result.changes), 1)
        change = result.changes[0]
        self.assertEqual(change.type, ChangeType.MOVED)
        self.assertEqual(change.task_id, 'existing')
        self.assertEqual(change.previous_start, at(9))
        self.assertEqual(change.new_start, at(10, 15))
        self.assertEqual(change.explanation, 'Task "Inbox" moved from 09:00 AM to 10:15 AM.')

    def test_unchanged_placement_not_reported(self):
        existing = make_task('existing', scheduled_start=at(9))
        result = reschedule([existing], self.preferences, TARGET, NOW)
        self.assertEqual(result.changes, [])

    def test_dropped_task_reported(self):
        preferences = make_preferences(max_deep_focus_minutes=30)
        existing = make_task('deep', energy_level='deep-focus', scheduled_start=at(9))

        result = reschedule([existing], preferences, TARGET, NOW)

        self.assertEqual([change.type for change in result.changes], [ChangeType.UNSCHEDULED])
        self.assertIn('deep-focus capacity', result.changes[0].explanation)

    def test_result_serialization(self):
        task = make_task('slow', estimated_duration=60)
        result = reschedule([task], self.preferences, TARGET, NOW,
                            incomplete_task_id='slow', actual_duration=80)
        data = reschedule_result_to_dict(result)
        self.assertEqual(data['changes'][0]['type'], 'overrun')
        self.assertEqual(data['changes'][0]['overrun_minutes'], 20)
        self.assertNotIn('previous_start', data['changes'][0])
        self.assertEqual(data['schedule']['date'], '2026-03-02')


class APIEndpointTests(APITestCase):
    """Tests for the API endpoints."""

    def setUp(self):
        cache.clear()
        self.tasks = [
            {
                'id': 1,
                'title': 'Prepare slides',
                'estimated_duration': 60,
                'deadline': '2026-03-03T17:00:00Z',
                'priority': 'high',
            },
            {
                'id': 2,
                'title': 'Team sync',
                'estimated_duration': 30,
                'deadline': '2026-03-03T17:00:00Z',
                'flexibility': 'fixed',
                'scheduled_start': '2026-03-02T13:00:00Z',
            },
        ]
        self.preferences = {
            'working_hours': {'start': '09:00', 'end': '17:00'},
            'max_deep_focus_minutes': 240,
            'buffer_minutes': 15,
            'time_zone': 'UTC',
        }

    def post(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def test_generate_schedule(self):
        """POST /api/schedule/ should return placed slots."""
        response = self.post('/api/schedule/', {
            'tasks': self.tasks,
            'preferences': self.preferences,
            'date': '2026-03-02',
            'now': '2026-03-02T08:00:00Z',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        schedule = response.data['schedule']
        self.assertEqual(schedule['date'], '2026-03-02')
        self.assertEqual([slot['task_id'] for slot in schedule['slots']], ['1', '2'])
        self.assertEqual(schedule['slots'][0]['scheduled_start'], '2026-03-02T09:00:00+00:00')
        self.assertTrue(schedule['slots'][1]['is_fixed'])

    def test_defaults_applied(self):
        """Missing preferences fall back to the configured defaults."""
        response = self.post('/api/schedule/', {
            'tasks': self.tasks,
            'date': '2026-03-02',
            'now': '2026-03-02T08:00:00Z',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['schedule']['working_hours'], {'start': '09:00', 'end': '17:00'})

    def test_zero_buffer_honoured(self):
        preferences = dict(self.preferences, buffer_minutes=0)
        tasks = [dict(self.tasks[0], id=n) for n in (1, 2)]
        response = self.post('/api/schedule/', {
            'tasks': tasks,
            'preferences': preferences,
            'date': '2026-03-02',
            'now': '2026-03-02T08:00:00Z',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        starts = [slot['scheduled_start'] for slot in response.data['schedule']['slots']]
        self.assertEqual(starts, ['2026-03-02T09:00:00+00:00', '2026-03-02T10:00:00+00:00'])

    def test_invalid_task_rejected(self):
        response = self.post('/api/schedule/', {
            'tasks': [{'id': 1, 'title': '', 'estimated_duration': 3, 'deadline': 'soon'}],
        })

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_MISSING_FIELD.value)

    def test_invalid_preferences_rejected(self):
        preferences = dict(self.preferences, working_hours={'start': '17:00', 'end': '09:00'})
        response = self.post('/api/schedule/', {'tasks': self.tasks, 'preferences': preferences})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_WORKING_HOURS.value)

    def test_unknown_time_zone_rejected(self):
        preferences = dict(self.preferences, time_zone='Nowhere/Special')
        response = self.post('/api/schedule/', {'tasks': self.tasks, 'preferences': preferences})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_TIME_ZONE.value)

    def test_regenerate_reports_overrun(self):
        response = self.post('/api/schedule/regenerate/', {
            'tasks': self.tasks,
            'preferences': self.preferences,
            'date': '2026-03-02',
            'now': '2026-03-02T08:00:00Z',
            'incomplete_task_id': '1',
            'actual_duration': 95,
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Schedule adjusted due to 1 change(s).')
        self.assertEqual(response.data['changes'][0]['type'], 'overrun')
        self.assertEqual(response.data['changes'][0]['overrun_minutes'], 35)
        self.assertIn('slots', response.data['schedule'])

    def test_schedule_range(self):
        response = self.post('/api/schedule/range/', {
            'tasks': self.tasks,
            'preferences': self.preferences,
            'start_date': '2026-03-02',
            'end_date': '2026-03-03',
            'now': '2026-03-02T08:00:00Z',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual([s['date'] for s in response.data['schedules']], ['2026-03-02', '2026-03-03'])

    def test_schedule_range_too_long(self):
        response = self.post('/api/schedule/range/', {
            'tasks': self.tasks,
            'start_date': '2026-03-02',
            'end_date': '2026-03-20',
        })

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_INVALID_DATE_RANGE.value)

    def test_explain_task(self):
        response = self.post('/api/schedule/explain/', {
            'tasks': self.tasks,
            'task_id': '1',
            'preferences': self.preferences,
            'now': '2026-03-02T08:00:00Z',
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['task_title'], 'Prepare slides')
        self.assertEqual(response.data['deadline_urgency'], 'moderate')
        self.assertIn('final_score', response.data['scores'])
        self.assertIn('## Scheduling Analysis for "Prepare slides"', response.data['explanation'])

    def test_explain_unknown_task(self):
        response = self.post('/api/schedule/explain/', {'tasks': self.tasks, 'task_id': '99'})

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_TASK_NOT_FOUND.value)

    def test_explain_without_tasks(self):
        response = self.post('/api/schedule/explain/', {'tasks': [], 'task_id': '1'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error_code'], ErrorCode.ERR_EMPTY_TASKS.value)

    def test_api_info_endpoint(self):
        """GET /api/ should return API information."""
        response = self.client.get('/api/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('name', response.data)
        self.assertIn('endpoints', response.data)
        self.assertEqual(response.data['weights'], {'urgency': 0.4, 'importance': 0.35, 'risk': 0.25})
