from datetime import datetime, timezone

from app.services.period_policy import period_start, should_reset


def test_same_month_does_not_reset():
    assert should_reset(datetime(2024, 1, 1), datetime(2024, 1, 31, 23, 59)) is False


def test_next_month_resets():
    assert should_reset(datetime(2024, 1, 15), datetime(2024, 2, 1)) is True


def test_same_month_of_a_later_year_resets():
    assert should_reset(datetime(2023, 3, 10), datetime(2024, 3, 10)) is True


def test_december_to_january_resets():
    assert should_reset(datetime(2023, 12, 31, 23, 59), datetime(2024, 1, 1, 0, 0)) is True


def test_now_before_anchor_never_resets():
    assert should_reset(datetime(2024, 2, 1), datetime(2024, 1, 15)) is False


def test_aware_datetimes_are_compared_in_utc():
    anchor = datetime(2024, 1, 31, 23, 30, tzinfo=timezone.utc)
    now = datetime(2024, 2, 1, 0, 30, tzinfo=timezone.utc)
    assert should_reset(anchor, now) is True
    assert should_reset(anchor.replace(tzinfo=None), now) is True


def test_period_start():
    assert period_start(datetime(2024, 2, 17, 8, 30, 12, 500)) == datetime(2024, 2, 1)
