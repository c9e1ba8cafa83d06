from datetime import datetime, timedelta, timezone

from chatdigest.cursor import (
    DISCORD_EPOCH_MS,
    cursor_after,
    cursor_to_time,
    cursor_value,
    time_to_cursor,
)


def test_epoch_is_cursor_zero():
    epoch = datetime.fromtimestamp(DISCORD_EPOCH_MS / 1000, tz=timezone.utc)
    assert time_to_cursor(epoch) == "0"


def test_known_snowflake_decodes_to_its_creation_time():
    # 175928847299117063 is the example id from the platform's API docs
    assert cursor_to_time("175928847299117063") == datetime(2016, 4, 30, 11, 18, 25, 796000, tzinfo=timezone.utc)


def test_round_trip_keeps_millisecond_precision():
    t = datetime(2024, 5, 1, 12, 30, 15, 123000, tzinfo=timezone.utc)
    assert cursor_to_time(time_to_cursor(t)) == t


def test_naive_datetimes_are_utc():
    aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert time_to_cursor(aware.replace(tzinfo=None)) == time_to_cursor(aware)


def test_later_time_gives_larger_cursor():
    t = datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert cursor_value(time_to_cursor(t + timedelta(milliseconds=1))) > cursor_value(time_to_cursor(t))


def test_cursor_after_covers_the_whole_millisecond():
    t = datetime(2024, 5, 1, 8, 0, 0, 500000, tzinfo=timezone.utc)
    start = cursor_value(time_to_cursor(t))
    end = cursor_value(cursor_after(t))
    assert end == start + (1 << 22) - 1
    assert cursor_to_time(end) == t
    assert cursor_value(time_to_cursor(t + timedelta(milliseconds=1))) == end + 1


def test_ids_of_different_length_compare_numerically():
    assert cursor_value("99999999999999999") < cursor_value("100000000000000000")
