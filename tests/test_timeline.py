"""
Tests for timeline construction and window filtering.
"""

from models.schemas import CanonicalState, HistoryRecord
from services.timeline import Record, filter_timeline, make_timeline, make_timeline_from_vm

RUNNING = CanonicalState.RUNNING
STOPPED = CanonicalState.STOPPED


# ---------------------------------------------------------------------------
# make_timeline
# ---------------------------------------------------------------------------

class TestMakeTimeline:
    def test_segments_are_contiguous(self):
        history = [
            HistoryRecord(seq=1, stime=100, state=4),
            HistoryRecord(seq=0, stime=0, state=3, lcm_state=3),
            HistoryRecord(seq=2, stime=250, state=3, lcm_state=3),
        ]
        timeline = make_timeline(history)

        assert timeline == [
            Record(0, 100, RUNNING),
            Record(100, 250, STOPPED),
            Record(250, None, RUNNING),
        ]
        assert timeline[-1].is_open

    def test_action_used_without_state_codes(self):
        timeline = make_timeline([HistoryRecord(seq=0, stime=5, action=20)])
        assert timeline == [Record(5, None, STOPPED)]

    def test_empty_history(self):
        assert make_timeline([]) == []

    def test_from_vm(self, vm):
        assert make_timeline_from_vm(vm) == [Record(0, None, RUNNING)]


# ---------------------------------------------------------------------------
# filter_timeline
# ---------------------------------------------------------------------------

class TestFilterTimeline:
    def test_clips_to_window(self):
        timeline = [Record(58, 131, RUNNING)]
        assert filter_timeline(timeline, 60, 120) == [Record(60, 120, RUNNING)]

    def test_drops_records_outside_window(self):
        timeline = [Record(0, 60, RUNNING), Record(120, 180, STOPPED)]
        assert filter_timeline(timeline, 60, 120) == []

    def test_open_record_ends_at_window(self):
        timeline = [Record(30, None, RUNNING)]
        assert filter_timeline(timeline, 60, 120) == [Record(60, 120, RUNNING)]

    def test_drops_empty_records(self):
        timeline = [Record(70, 70, RUNNING), Record(90, 80, RUNNING)]
        assert filter_timeline(timeline, 60, 120) == []

    def test_is_idempotent(self):
        timeline = [
            Record(0, 65, RUNNING),
            Record(65, 100, STOPPED),
            Record(100, None, RUNNING),
        ]
        once = filter_timeline(timeline, 60, 120)
        assert filter_timeline(once, 60, 120) == once

    def test_results_stay_inside_window(self):
        timeline = [Record(0, 65, RUNNING), Record(65, 100, STOPPED), Record(100, None, RUNNING)]
        for rec in filter_timeline(timeline, 60, 120):
            assert 60 <= rec.start < rec.end <= 120

    def test_duration(self):
        assert Record(10, 70, RUNNING).duration() == 60
        assert Record(10, None, RUNNING).duration() == 0
