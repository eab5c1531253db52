"""Tests for class token extraction and counting."""

from collections import Counter

from classtally.analysis.extractor import (
    count_occurrences,
    extract_classes,
    rank_classes,
    split_class_string,
)


class TestSplitClassString:

    def test_drops_empty_tokens(self):
        assert split_class_string("  flex   items-center \n gap-2 ") == ["flex", "items-center", "gap-2"]

    def test_empty_string(self):
        assert split_class_string("   ") == []


class TestExtractClasses:

    def test_class_attribute(self):
        assert extract_classes('<div class="p-4 m-2">') == ["p-4", "m-2"]

    def test_classname_attribute_single_quotes(self):
        assert extract_classes("<Button className='btn btn-primary' />") == ["btn", "btn-primary"]

    def test_whitespace_does_not_change_tokens(self):
        assert Counter(extract_classes('<div class="a  b">')) == Counter(extract_classes('<div class="a b">'))
        assert Counter(extract_classes('<div class="a  b">')) == Counter({"a": 1, "b": 1})

    def test_dynamic_binding_takes_every_quoted_string(self):
        content = "<div className={isActive ? 'bg-blue-500 text-white' : 'bg-gray-100'}>"
        assert extract_classes(content) == ["bg-blue-500", "text-white", "bg-gray-100"]

    def test_dynamic_binding_with_nested_braces(self):
        content = "<div className={cx({ 'font-bold': active, 'italic': { deep: 'underline' } })}>"
        assert extract_classes(content) == ["font-bold", "italic", "underline"]

    def test_function_call_arguments(self):
        assert extract_classes("cls('flex', 'gap-2')") == ["flex", "gap-2"]

    def test_clsx_with_object_argument(self):
        content = 'const c = clsx("px-4", { "py-2": large })'
        assert extract_classes(content) == ["px-4", "py-2"]

    def test_call_with_deeply_nested_object(self):
        content = 'cva("base", { variants: { intent: { primary: { x: "bg-blue" } } } })'
        assert extract_classes(content) == ["base", "bg-blue"]

    def test_unbalanced_brace_inside_string(self):
        assert extract_classes("clsx('a', '}')") == ["a", "}"]

    def test_object_argument_holding_a_call(self):
        content = 'clsx("p-2", { "m-1": isOpen() })'
        assert extract_classes(content) == ["p-2", "m-1"]

    def test_nested_call_inside_unmatched_call(self):
        assert extract_classes("cls(wrap(tw('ring-2')))") == ["ring-2"]

    def test_unclosed_call_with_many_braces_does_not_hang(self):
        content = "clsx(" + "{ a: { b: 'c' } }, " * 500 + "{ x: fn("
        assert extract_classes(content) == []

    def test_template_literal_is_not_quoted(self):
        assert extract_classes("<div class=`p-4`>") == []

    def test_unclosed_call_does_not_hang(self):
        content = "clsx(" + "a, " * 2000
        assert extract_classes(content) == []

    def test_no_matches(self):
        assert extract_classes("const x = 1;") == []


class TestCountOccurrences:

    def test_counts_across_files(self):
        files = [
            {"path": "a.html", "content": "<div class='p-4 m-2'>"},
            {"path": "b.js", "content": "cls('flex', 'gap-2')"},
        ]
        assert count_occurrences(files) == {"p-4": 1, "m-2": 1, "flex": 1, "gap-2": 1}

    def test_skips_ineligible_paths(self):
        files = [
            {"path": "index.html", "content": '<p class="text-sm">'},
            {"path": "node_modules/x/index.html", "content": '<p class="text-lg">'},
            {"path": "README.md", "content": '<p class="text-xl">'},
        ]
        assert count_occurrences(files) == {"text-sm": 1}

    def test_total_equals_sum_of_per_file_tokens(self):
        files = [
            {"path": "a.html", "content": '<div class="flex p-4"><span class="flex">'},
            {"path": "b.tsx", "content": "<div className={on ? 'flex' : 'hidden'}>"},
        ]
        counts = count_occurrences(files)
        per_file = sum(len(extract_classes(f["content"])) for f in files)
        assert sum(counts.values()) == per_file == 5
        assert counts["flex"] == 3
        assert count_occurrences(files) == counts

    def test_keys_in_first_seen_order(self):
        files = [{"path": "a.html", "content": '<i class="z y"><b class="x z">'}]
        assert list(count_occurrences(files)) == ["z", "y", "x"]


class TestRankClasses:

    def test_orders_by_count_then_first_seen(self):
        counts = {"b": 2, "a": 3, "c": 2, "d": 1}
        ranked = rank_classes(counts, limit=3)
        assert [(c.class_name, c.count) for c in ranked] == [("a", 3), ("b", 2), ("c", 2)]

    def test_limit_larger_than_input(self):
        assert len(rank_classes({"a": 1}, limit=20)) == 1
