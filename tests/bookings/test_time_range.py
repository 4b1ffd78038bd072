import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_bookings.db")

import pytest

from bookings_service.errors import InvalidTimeFormat, ValidationError
from bookings_service.time_range import add_minutes, from_minutes, overlaps, to_minutes


def test_to_minutes_parses_wall_clock_times():
    assert to_minutes("00:00") == 0
    assert to_minutes("09:30") == 570
    assert to_minutes("9:05") == 545
    assert to_minutes("23:59") == 1439


@pytest.mark.parametrize("value", ["24:00", "12:60", "1230", "ab:cd", "", "12:5", None])
def test_to_minutes_rejects_malformed_values(value):
    with pytest.raises(InvalidTimeFormat) as exc:
        to_minutes(value, field="start_time")
    assert exc.value.field == "start_time"


def test_from_minutes_zero_pads():
    assert from_minutes(545) == "09:05"
    assert from_minutes(0) == "00:00"


def test_add_minutes_cannot_cross_midnight():
    assert add_minutes("09:00", 90) == "10:30"
    with pytest.raises(ValidationError):
        add_minutes("23:30", 45)


def test_overlap_examples():
    nine, half_nine, ten, half_ten, eleven = 540, 570, 600, 630, 660

    assert overlaps(nine, ten, half_nine, half_ten) is True
    # touching boundaries do not conflict
    assert overlaps(nine, ten, ten, eleven) is False
    assert overlaps(ten, eleven, nine, ten) is False
    # containment
    assert overlaps(nine, eleven, half_nine, ten) is True
    assert overlaps(half_nine, ten, nine, eleven) is True
