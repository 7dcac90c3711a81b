"""Tests for data models."""

import pytest

from src.snapwatch.exceptions import InvalidCheckpointError
from src.snapwatch.models import (
    Change,
    ChangeKind,
    CheckpointAndChange,
    MonitorCheckpoint,
    parse_global_checkpoint,
)


class TestMonitorCheckpoint:
    """Tests for MonitorCheckpoint class."""

    def test_ordering(self):
        a = MonitorCheckpoint("m1", 1, 5, 9)
        b = MonitorCheckpoint("m1", 2, 0, 0)
        c = MonitorCheckpoint("m1", 2, 0, 1)
        assert a < b < c
        assert max([c, a, b]) == c

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            MonitorCheckpoint("m1", -1, 0, 0)
        with pytest.raises(ValueError):
            MonitorCheckpoint("m1", 0, 0, -3)

    def test_json_round_trip(self):
        checkpoint = MonitorCheckpoint("m1", 3, 4, 5)
        assert MonitorCheckpoint.from_json(checkpoint.to_json()) == checkpoint

    def test_from_dict_coerces_numbers(self):
        data = {
            "monitor_name": "m1",
            "snapshot_number": "2",
            "read_record_number": 1,
            "write_record_number": "0",
        }
        assert MonitorCheckpoint.from_dict(data) == MonitorCheckpoint("m1", 2, 1, 0)


class TestChange:
    """Tests for Change and CheckpointAndChange."""

    def test_to_dict(self):
        change = Change(ChangeKind.DELETED_DIR, "/r/d/", "local", MonitorCheckpoint("m1", 1, 2, 3))
        data = change.to_dict()
        assert data["kind"] == "deleted_dir"
        assert data["path"] == "/r/d/"
        assert data["checkpoint"]["read_record_number"] == 2
        assert change.monitor_name == "m1"

    def test_checkpoint_and_change_round_trip(self):
        item = CheckpointAndChange(
            "42",
            Change(ChangeKind.NEW_FILE, "/r/a", "local", MonitorCheckpoint("m1", 0, 0, 1)),
        )
        assert CheckpointAndChange.from_dict(item.to_dict()) == item


class TestParseGlobalCheckpoint:
    """Tests for parse_global_checkpoint."""

    def test_valid(self):
        assert parse_global_checkpoint("0") == 0
        assert parse_global_checkpoint("17") == 17

    @pytest.mark.parametrize("value", ["", "abc", "-5", None, "1.5"])
    def test_invalid(self, value):
        with pytest.raises(InvalidCheckpointError):
            parse_global_checkpoint(value)
