import pytest

from cc_antidebug import Range, find_range, scan_and_replace


def test_replaces_span_between_delimiters():
    content = "a;return x('no need to monitor cost'),1;b"
    out = scan_and_replace(content, "no need", "return", ";", ";")
    assert out == "a;;b"


@pytest.mark.parametrize("prefix,middle,suffix", [
    ("head;", "(", ")"),
    ("", " x ", ",1"),
    ("var q=2,", "", ""),
])
def test_only_delimited_span_changes(prefix, middle, suffix):
    content = f"{prefix}return{middle}ANCHOR{suffix};tail"
    out = scan_and_replace(content, "ANCHOR", "return", ";", "<R>")
    assert out == f"{prefix}<R>tail"


def test_backward_uses_nearest_delimiter():
    content = "return 1;return 2,MARK;"
    span = find_range(content, "MARK", "return", ";")
    assert span == Range(9, len(content))


def test_missing_backward_delimiter_starts_at_anchor():
    assert find_range("abc", "b", "zz", "c") == Range(1, 3)


def test_missing_forward_delimiter_ends_after_anchor():
    assert find_range("xyz", "y", "", "!") == Range(1, 2)


def test_forward_delimiter_inside_anchor_is_skipped():
    assert find_range("a;b;c", ";b", "", ";") == Range(1, 4)


def test_missing_anchor_returns_none():
    assert find_range("var a=1;", "nope", "var", ";") is None
    assert scan_and_replace("var a=1;", "nope", "var", ";", "") is None


def test_empty_anchor_returns_none():
    assert scan_and_replace("abc", "", "a", "c", "x") is None


def test_only_first_occurrence_is_replaced():
    assert scan_and_replace("A;A;", "A", "", ";", "B") == "BA;"


def test_brace_mode_spans_nested_object():
    content = "foo({a:{b:1},c:2})bar"
    span = find_range(content, "{a:", "", "", match_braces=True)
    assert span == Range(4, 17)
    assert content[span.end - 1] == "}"
    assert content[span.end:] == ")bar"


def test_brace_mode_replacement():
    content = "foo({a:{b:{c:{}}},c:2})bar"
    assert scan_and_replace(content, "{a:", "", ";", "{}", match_braces=True) == "foo({})bar"


def test_brace_mode_ignores_forward_delimiter():
    content = "x({k:1;v:2});"
    assert scan_and_replace(content, "{k:", "x", ";", "y", match_braces=True) == "y);"


def test_brace_mode_ignores_close_before_first_open():
    assert find_range("x}{1}", "x", "", "", match_braces=True) == Range(0, 5)


def test_brace_mode_unbalanced_ends_after_anchor():
    assert find_range("x{a{", "x", "", "", match_braces=True) == Range(0, 1)


def test_brace_mode_counts_braces_inside_strings():
    # Known approximation: the quoted "}" closes the object early
    content = 'f({s:"}"});g()'
    assert find_range(content, "{s:", "", "", match_braces=True) == Range(2, 7)


def test_scanner_is_pure():
    content = "keep;return MARK;keep"
    first = scan_and_replace(content, "MARK", "return", ";", "")
    second = scan_and_replace(content, "MARK", "return", ";", "")
    assert first == second == "keep;keep"
    assert content == "keep;return MARK;keep"
