import uuid
from datetime import datetime, timezone

from app.db.models import RecurrenceFrequency, RecurrenceRule
from app.services.recurrence.expander import expand, horizon_days_for

UTC = timezone.utc


def _rule(**values) -> RecurrenceRule:
    base = dict(
        user_id=uuid.uuid4(),
        pet_id=uuid.uuid4(),
        frequency=RecurrenceFrequency.DAILY,
        interval=1,
        timezone="UTC",
        start_date=datetime(2024, 1, 1),
        daily_times=["09:00"],
    )
    base.update(values)
    return RecurrenceRule(**base)


class TestHorizon:
    def test_fixed_frequencies(self):
        assert horizon_days_for(RecurrenceFrequency.DAILY) == 90
        assert horizon_days_for(RecurrenceFrequency.WEEKLY) == 180
        assert horizon_days_for(RecurrenceFrequency.MONTHLY) == 730
        assert horizon_days_for(RecurrenceFrequency.YEARLY) == 1825

    def test_custom_depends_on_interval(self):
        assert horizon_days_for(RecurrenceFrequency.CUSTOM, 3) == 90
        assert horizon_days_for(RecurrenceFrequency.CUSTOM, 10) == 180
        assert horizon_days_for(RecurrenceFrequency.CUSTOM, 30) == 365


class TestExpand:
    def test_daily_within_horizon(self):
        rule = _rule()
        now = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
        instants = expand(rule, horizon_days=3, now=now)
        assert instants == [
            datetime(2024, 1, 1, 9, 0, tzinfo=UTC),
            datetime(2024, 1, 2, 9, 0, tzinfo=UTC),
            datetime(2024, 1, 3, 9, 0, tzinfo=UTC),
        ]

    def test_past_instants_are_skipped(self):
        rule = _rule()
        now = datetime(2024, 1, 2, 10, 0, tzinfo=UTC)
        instants = expand(rule, horizon_days=2, now=now)
        assert instants[0] == datetime(2024, 1, 3, 9, 0, tzinfo=UTC)

    def test_weekly_every_other_week_monday_and_wednesday(self):
        # 2024-01-01 is a Monday; days_of_week uses 0 = Sunday
        rule = _rule(
            frequency=RecurrenceFrequency.WEEKLY, interval=2, days_of_week=[1, 3]
        )
        now = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
        instants = expand(rule, horizon_days=28, now=now)
        assert [i.date().isoformat() for i in instants] == [
            "2024-01-01",
            "2024-01-03",
            "2024-01-15",
            "2024-01-17",
        ]

    def test_weekly_without_days_uses_start_weekday(self):
        rule = _rule(frequency=RecurrenceFrequency.WEEKLY, start_date=datetime(2024, 1, 3))
        now = datetime(2024, 1, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=14, now=now)
        assert [i.day for i in instants] == [3, 10]

    def test_monthly_day_31_clamps_to_month_end(self):
        rule = _rule(
            frequency=RecurrenceFrequency.MONTHLY,
            day_of_month=31,
            start_date=datetime(2024, 1, 31),
        )
        now = datetime(2024, 1, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=125, now=now)
        assert [i.date().isoformat() for i in instants] == [
            "2024-01-31",
            "2024-02-29",
            "2024-03-31",
            "2024-04-30",
        ]

    def test_monthly_interval_counts_across_year_boundary(self):
        rule = _rule(
            frequency=RecurrenceFrequency.MONTHLY,
            interval=2,
            start_date=datetime(2024, 11, 15),
        )
        now = datetime(2024, 11, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=160, now=now)
        assert [i.date().isoformat() for i in instants] == [
            "2024-11-15",
            "2025-01-15",
            "2025-03-15",
        ]

    def test_new_york_daily_across_spring_forward(self):
        rule = _rule(
            timezone="America/New_York",
            start_date=datetime(2024, 3, 9),
            daily_times=["08:00"],
            end_date=datetime(2024, 3, 11, 23, 59),
        )
        now = datetime(2024, 3, 9, tzinfo=UTC)
        instants = expand(rule, horizon_days=30, now=now)
        assert [i.hour for i in instants] == [13, 12, 12]

    def test_yearly(self):
        rule = _rule(frequency=RecurrenceFrequency.YEARLY, start_date=datetime(2024, 3, 10))
        now = datetime(2024, 1, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=500, now=now)
        assert [i.year for i in instants] == [2024, 2025]

    def test_times_per_day_caps_daily_times(self):
        rule = _rule(
            frequency=RecurrenceFrequency.TIMES_PER_DAY,
            times_per_day=2,
            daily_times=["08:00", "14:00", "20:00"],
        )
        now = datetime(2024, 1, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=0.9, now=now)
        assert [i.hour for i in instants] == [8, 14]

    def test_end_date_bounds_the_series(self):
        rule = _rule(end_date=datetime(2024, 1, 2, 23, 59))
        now = datetime(2024, 1, 1, tzinfo=UTC)
        assert len(expand(rule, horizon_days=30, now=now)) == 2

    def test_end_date_in_the_past_yields_nothing(self):
        rule = _rule(end_date=datetime(2023, 12, 1))
        assert expand(rule, horizon_days=30, now=datetime(2024, 1, 1, tzinfo=UTC)) == []

    def test_wall_time_is_kept_across_dst(self):
        rule = _rule(timezone="Europe/Berlin", start_date=datetime(2024, 3, 30))
        now = datetime(2024, 3, 30, tzinfo=UTC)
        instants = expand(rule, horizon_days=2, now=now)
        assert [i.hour for i in instants] == [8, 7]

    def test_default_daily_time_when_no_times(self):
        rule = _rule(daily_times=None)
        now = datetime(2024, 1, 1, tzinfo=UTC)
        instants = expand(rule, horizon_days=0.5, default_daily_time="07:30", now=now)
        assert instants == [datetime(2024, 1, 1, 7, 30, tzinfo=UTC)]

    def test_same_inputs_give_same_instants(self):
        rule = _rule(frequency=RecurrenceFrequency.CUSTOM, interval=3)
        now = datetime(2024, 1, 1, tzinfo=UTC)
        assert expand(rule, now=now) == expand(rule, now=now)
