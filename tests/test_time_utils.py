from types import SimpleNamespace

from salonqueue.services.time_utils import (
    FULLY_BOOKED_MESSAGE,
    business_today,
    can_complete_before_closing,
    format_time_12,
    is_business_open,
    minutes_between,
    minutes_since_midnight,
    parse_time_to_minutes,
)

from conftest import NOW, ist, minutes


def _business(open_time="09:00", close_time="20:00", is_closed=False):
    return SimpleNamespace(open_time=open_time, close_time=close_time, is_closed=is_closed)


def test_join_rejected_when_it_would_finish_past_closing_buffer():
    decision = can_complete_before_closing("18:00", 1020, 50, 40, buffer_minutes=10)

    assert decision.can_join is False
    assert decision.estimated_finish_minutes == 1110
    assert decision.limit_minutes == 1070
    assert decision.message == FULLY_BOOKED_MESSAGE
    assert decision.finish_time_str == "6:30 PM"
    assert decision.closing_time_str == "6:00 PM"


def test_finish_after_midnight_wraps_to_the_next_morning():
    # 23:00 with 50 min ahead and a 40 min service finishes at 00:30
    decision = can_complete_before_closing("23:30", 1380, 50, 40, buffer_minutes=0)

    assert decision.can_join is False
    assert decision.estimated_finish_minutes == 1470
    assert decision.finish_time_str == "12:30 AM"


def test_join_allowed_exactly_at_the_limit():
    decision = can_complete_before_closing("18:00", 1000, 30, 40, buffer_minutes=10)
    assert decision.can_join is True
    assert decision.message is None


def test_default_buffer_comes_from_settings():
    # 17:00 + 50 min lands on 17:50, the last admissible minute with a 10 min buffer
    assert can_complete_before_closing("18:00", 1020, 0, 50).can_join is True
    assert can_complete_before_closing("18:00", 1020, 0, 51).can_join is False


def test_clock_helpers_use_business_timezone():
    assert minutes_since_midnight(NOW) == 11 * 60
    assert business_today(ist(0, 15)).day == 10
    assert minutes_between(NOW, NOW + minutes(25)) == 25
    assert minutes_between(NOW + minutes(5), NOW) == -5


def test_parse_and_format_times():
    assert parse_time_to_minutes("09:30") == 570
    assert parse_time_to_minutes("18:00:00") == 1080
    assert parse_time_to_minutes(None) == 0
    assert format_time_12("13:05") == "1:05 PM"
    assert format_time_12("00:15") == "12:15 AM"
    assert format_time_12("12:00") == "12:00 PM"


def test_business_open_checks():
    assert is_business_open(_business(), NOW).is_open is True

    closed = is_business_open(_business(is_closed=True), NOW)
    assert closed.is_open is False
    assert "closed by the owner" in closed.message

    early = is_business_open(_business(), ist(8, 30))
    assert early.is_open is False
    assert "opens at 9:00 AM" in early.message

    late = is_business_open(_business(), ist(20, 30))
    assert late.is_open is False
    assert "closed at 8:00 PM" in late.message
