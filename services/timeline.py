from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from models.schemas import CanonicalState, HistoryRecord, VMDescriptor
from services.states import map_state, state_from_action


@dataclass(frozen=True)
class Record:
    start: int
    end: Optional[int]
    state: CanonicalState

    @property
    def is_open(self) -> bool:
        return self.end is None

    def duration(self) -> int:
        if self.end is None:
            return 0
        return self.end - self.start


def _segment_state(entry: HistoryRecord) -> CanonicalState:
    if entry.state is None and entry.lcm_state is None and entry.lcm_state_str is None:
        return state_from_action(entry.action)
    return map_state(entry.state, entry.lcm_state, entry.lcm_state_str)


def make_timeline(history: Iterable[HistoryRecord]) -> List[Record]:
    entries = sorted(history, key=lambda h: h.seq)
    timeline = []
    for i, entry in enumerate(entries):
        end = entries[i + 1].stime if i + 1 < len(entries) else None
        timeline.append(Record(start=entry.stime, end=end, state=_segment_state(entry)))
    return timeline


def make_timeline_from_vm(vm: VMDescriptor) -> List[Record]:
    return make_timeline(vm.history)


def filter_timeline(timeline: Iterable[Record], start: int, end: int) -> List[Record]:
    result = []
    for record in timeline:
        record_end = end if record.end is None else record.end
        if record_end <= start or record.start >= end or record_end <= record.start:
            continue
        result.append(replace(
            record,
            start=max(record.start, start),
            end=min(record_end, end)
        ))
    return result
