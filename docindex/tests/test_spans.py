import random
from docindex.core.synthesize.spans import SpanInterval, SpanOverlapIndex
from docindex.models.layout import DocumentSpan


def covered(intervals):
    return {i for iv in intervals for i in range(iv.start, iv.end)}


def naive_overlaps(spans, offset, length):
    if length <= 0:
        return False
    end = offset + length
    return any(s.length > 0 and s.offset < end and offset < s.offset + s.length for s in spans)


def test_merge_overlapping_and_adjacent():
    merged = SpanOverlapIndex.merge([
        SpanInterval(10, 20),
        SpanInterval(0, 5),
        SpanInterval(5, 9),      # adjacent to [0, 5)
        SpanInterval(15, 30),    # overlaps [10, 20)
        SpanInterval(40, 41),
    ])
    assert [(i.start, i.end) for i in merged] == [(0, 9), (10, 30), (40, 41)]


def test_merged_set_is_disjoint_sorted_and_preserves_union():
    rng = random.Random(7)
    for _ in range(200):
        spans = [DocumentSpan(offset=rng.randint(0, 200), length=rng.randint(0, 25)) for _ in range(rng.randint(0, 15))]
        index = SpanOverlapIndex(spans)

        for a, b in zip(index.intervals, index.intervals[1:]):
            assert a.start < a.end
            assert a.end < b.start

        expected = {i for s in spans for i in range(s.offset, s.offset + s.length)}
        assert covered(index.intervals) == expected


def test_binary_search_agrees_with_linear_scan():
    rng = random.Random(11)
    for _ in range(200):
        spans = [DocumentSpan(offset=rng.randint(0, 300), length=rng.randint(1, 30)) for _ in range(rng.randint(0, 12))]
        index = SpanOverlapIndex(spans)
        for _ in range(30):
            offset, length = rng.randint(0, 330), rng.randint(0, 20)
            assert index.overlaps(offset, length) == naive_overlaps(spans, offset, length)


def test_zero_length_spans_never_overlap():
    index = SpanOverlapIndex([DocumentSpan(offset=5, length=0)])
    assert index.intervals == []
    assert not index.overlaps(0, 10)

    index = SpanOverlapIndex([DocumentSpan(offset=0, length=10)])
    assert not index.overlaps(3, 0)


def test_boundaries_are_half_open():
    index = SpanOverlapIndex([DocumentSpan(offset=10, length=5)])   # [10, 15)
    assert not index.overlaps(5, 5)      # [5, 10)
    assert index.overlaps(5, 6)          # [5, 11)
    assert index.overlaps(14, 3)
    assert not index.overlaps(15, 3)


def test_contains_any():
    index = SpanOverlapIndex([DocumentSpan(offset=100, length=10)])
    assert index.contains_any([DocumentSpan(offset=0, length=5), DocumentSpan(offset=105, length=1)])
    assert not index.contains_any([DocumentSpan(offset=0, length=5)])
    assert not index.contains_any([])
