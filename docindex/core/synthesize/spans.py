from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, List
from docindex.models.layout import DocumentSpan

@dataclass(slots=True)
class SpanInterval:
    start: int
    end: int                                 # exclusive

class SpanOverlapIndex:
    """
    Merged, sorted, disjoint table-span intervals.
    Paragraph lookups are a binary search over interval starts instead of a scan.
    """

    def __init__(self, spans: Iterable[DocumentSpan]):
        self.intervals = self.merge(
            SpanInterval(s.offset, s.offset + s.length) for s in spans if s.length > 0
        )
        self._starts = [i.start for i in self.intervals]

    @staticmethod
    def merge(intervals: Iterable[SpanInterval]) -> List[SpanInterval]:
        ordered = sorted(intervals, key=lambda i: (i.start, i.end))
        merged: List[SpanInterval] = []
        for interval in ordered:
            last = merged[-1] if merged else None
            # Adjacent intervals ([0,5) and [5,9)) merge as well as overlapping ones
            if last is None or interval.start > last.end:
                merged.append(SpanInterval(interval.start, interval.end))
            else:
                last.end = max(last.end, interval.end)
        return merged

    def overlaps(self, offset: int, length: int) -> bool:
        """True if [offset, offset + length) intersects any merged interval."""
        if not self.intervals or length <= 0:
            return False
        end = offset + length
        # Rightmost interval starting before the query end is the only candidate:
        # intervals are disjoint and sorted, so their ends are sorted too.
        idx = bisect_right(self._starts, end - 1) - 1
        return idx >= 0 and self.intervals[idx].end > offset

    def contains_any(self, spans: Iterable[DocumentSpan]) -> bool:
        return any(self.overlaps(s.offset, s.length) for s in spans)
