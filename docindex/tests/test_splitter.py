import math
from docindex.config.settings import NodeConfig
from docindex.core.chunk.splitter import NodeSplitter
from docindex.models.node import Node
from helpers import WordTokenizer


def make_node(index, words, heading="Section"):
    content = " ".join(f"w{index}_{i}" for i in range(words))
    return Node(id=f"n{index}", index=index, section_heading=heading, content=content, page_number=index + 1, tokens=words)


def test_window_count_matches_formula():
    for size, overlap in [(10, 2), (8, 3), (100, 10)]:
        for total in range(size + 1, size * 6):
            ranges = NodeSplitter.get_token_ranges(total, size, overlap)
            assert len(ranges) == math.ceil((total - overlap) / (size - overlap)), (total, size, overlap)
            assert ranges[-1][1] == total
            assert all(e - s <= size for s, e in ranges)


def test_overlap_not_smaller_than_size_still_progresses():
    ranges = NodeSplitter.get_token_ranges(5, 3, 10)
    assert ranges == [(0, 3), (1, 4), (2, 5)]


def test_non_overlapping_parts_reconstruct_tokens():
    tokenizer = WordTokenizer()
    splitter = NodeSplitter(tokenizer, NodeConfig(max_tokens_per_node=10, overlap_tokens=3))
    node = make_node(0, 37)

    parts = splitter.split("doc", [node])
    rebuilt = tokenizer.encode(parts[0].content)
    for part in parts[1:]:
        rebuilt.extend(tokenizer.encode(part.content)[3:])
    assert rebuilt == tokenizer.encode(node.content)


def test_sub_nodes_replace_parent_in_place():
    splitter = NodeSplitter(WordTokenizer(), NodeConfig(max_tokens_per_node=10, overlap_tokens=2))
    nodes = [make_node(0, 5), make_node(1, 25, heading="Big"), make_node(2, 4)]

    out = splitter.split("doc", nodes)

    assert out[0].id == "n0"
    assert out[-1].id == "n2"
    middle = out[1:-1]
    assert len(middle) == math.ceil((25 - 2) / (10 - 2))
    assert all(n.index == 1 for n in middle)
    assert all(n.section_heading == "Big" and n.page_number == 2 for n in middle)
    assert all(n.tokens == len(n.content.split()) for n in middle)
    assert len({n.id for n in middle}) == len(middle)
    assert [n.index for n in out] == sorted(n.index for n in out)


def test_nodes_at_the_ceiling_are_untouched():
    splitter = NodeSplitter(WordTokenizer(), NodeConfig(max_tokens_per_node=10, overlap_tokens=2))
    node = make_node(0, 10)
    assert splitter.split("doc", [node]) == [node]
