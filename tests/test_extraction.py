"""Tests for the three extraction strategies and result shaping."""

import unittest

from scrapepipe.errors import ConfigError, ExtractionMiss, ExtractionShapeError, ResultShapeError
from scrapepipe.extraction import (
    AsFormParameter,
    AsString,
    AsURL,
    ConcatURL,
    Each,
    Field,
    Index,
    JoinURL,
    PathLookup,
    Pattern,
    QueryURL,
    StructuredMarkup,
    Take,
    shape_result,
)
from scrapepipe.models import URL, FormParameter, PlainString


_LINKS_HTML = '<a href="/x">A</a><a href="/y">B</a>'


class TestStructuredMarkup(unittest.TestCase):
    """CSS selection with attribute or text targets."""

    def test_exactly_one_href_resolved(self):
        """Cardinality 1 keeps the first node; href is resolved against the page URL."""
        step = StructuredMarkup(selector="a", attribute="href", capture=1, result=JoinURL())
        results = step.process(_LINKS_HTML, base_url="https://example.com/list/page")
        self.assertEqual(results, [URL("https://example.com/x")])

    def test_unbounded_with_configured_base(self):
        step = StructuredMarkup(selector="a", attribute="href", result=JoinURL("https://cdn.example.org/"))
        results = step.process(_LINKS_HTML)
        self.assertEqual(results, [URL("https://cdn.example.org/x"), URL("https://cdn.example.org/y")])

    def test_text_target(self):
        """Without an attribute the concatenated text content is read."""
        html = "<ul><li class='t'>one <b>1</b></li><li class='t'>two</li></ul>"
        step = StructuredMarkup(selector="li.t", result=AsString())
        self.assertEqual(step.process(html), [PlainString("one 1"), PlainString("two")])

    def test_nodes_missing_attribute_are_skipped(self):
        html = '<a>no link</a><a href="https://e.com/ok">ok</a>'
        step = StructuredMarkup(selector="a", attribute="href", result=AsURL())
        self.assertEqual(step.process(html), [URL("https://e.com/ok")])

    def test_all_nodes_skipped_is_a_miss(self):
        step = StructuredMarkup(selector="a", attribute="data-id", result=AsString())
        with self.assertRaises(ExtractionMiss):
            step.process(_LINKS_HTML)

    def test_no_match_is_a_miss(self):
        step = StructuredMarkup(selector="img", attribute="src", result=AsString())
        with self.assertRaises(ExtractionMiss):
            step.process(_LINKS_HTML)

    def test_invalid_selector_is_config_error(self):
        with self.assertRaises(ConfigError):
            StructuredMarkup(selector="a[", result=AsString())

    def test_malformed_url_is_fatal_to_the_capture(self):
        """A URL-producing rule given non-URL text raises instead of skipping."""
        html = '<a href="not a url">x</a>'
        step = StructuredMarkup(selector="a", attribute="href", result=AsURL())
        with self.assertRaises(ResultShapeError):
            step.process(html)


class TestPattern(unittest.TestCase):
    """Regex captures ordered by group index across all matches."""

    def test_groups_unbounded(self):
        step = Pattern(pattern=r"(\d+)-(\d+)", groups=[1, 2], result=AsString())
        self.assertEqual(step.process("12-34"), [PlainString("12"), PlainString("34")])

    def test_group_order_across_matches(self):
        """All group-1 values precede group-2 values; match order holds within a group."""
        step = Pattern(pattern=r"(\w)=(\d)", groups=[2, 1], result=AsString())
        values = [r.value for r in step.process("a=1 b=2 c=3")]
        self.assertEqual(values, ["a", "b", "c", "1", "2", "3"])

    def test_exactly_n_cutoff_after_ordering(self):
        step = Pattern(pattern=r"(\w)=(\d)", groups=[1, 2], capture=4, result=AsString())
        values = [r.value for r in step.process("a=1 b=2 c=3")]
        self.assertEqual(values, ["a", "b", "c", "1"])

    def test_optional_group_not_participating(self):
        step = Pattern(pattern=r"(\d+)(px)?", groups=[2], result=AsString())
        self.assertEqual(step.process("10px 20"), [PlainString("px")])

    def test_no_match_is_a_miss(self):
        step = Pattern(pattern=r"(\d+)", result=AsString())
        with self.assertRaises(ExtractionMiss):
            step.process("no digits here")

    def test_invalid_regex_is_config_error(self):
        with self.assertRaises(ConfigError):
            Pattern(pattern=r"(unclosed", result=AsString())

    def test_unknown_group_is_config_error(self):
        with self.assertRaises(ConfigError):
            Pattern(pattern=r"(\d+)", groups=[2], result=AsString())

    def test_form_parameter_shape(self):
        step = Pattern(pattern=r'name="csrf" value="(\w+)"', result=AsFormParameter("csrf"))
        html = '<input name="csrf" value="abc">'
        self.assertEqual(step.process(html), [FormParameter("csrf", "abc")])


class TestPathLookup(unittest.TestCase):
    """JSON lookup paths with explicit broadcast."""

    _DOC = '{"items":[{"v":1},{"v":2}]}'

    def test_broadcast_field(self):
        step = PathLookup(path=[Field("items"), Each(), Field("v")], result=AsString())
        self.assertEqual(step.process(self._DOC), [PlainString("1"), PlainString("2")])

    def test_field_on_array_is_shape_error(self):
        """A field lookup on an array is an error, not an empty result."""
        step = PathLookup(path=[Field("items"), Field("v")], result=AsString())
        with self.assertRaises(ExtractionShapeError):
            step.process(self._DOC)

    def test_index_and_take(self):
        step = PathLookup(path=[Field("items"), Index(1), Field("v"), Take()], result=AsString())
        self.assertEqual(step.process(self._DOC), [PlainString("2")])

    def test_index_out_of_range(self):
        step = PathLookup(path=[Field("items"), Index(5)], result=AsString())
        with self.assertRaises(ExtractionShapeError):
            step.process(self._DOC)

    def test_missing_field(self):
        step = PathLookup(path=[Field("nope")], result=AsString())
        with self.assertRaises(ExtractionShapeError):
            step.process(self._DOC)

    def test_take_on_object_is_shape_error(self):
        step = PathLookup(path=[Field("items"), Index(0)], result=AsString())
        with self.assertRaises(ExtractionShapeError):
            step.process(self._DOC)

    def test_invalid_json_is_shape_error(self):
        step = PathLookup(path=[Field("a")], result=AsString())
        with self.assertRaises(ExtractionShapeError):
            step.process("<html>")

    def test_empty_broadcast_is_a_miss(self):
        step = PathLookup(path=[Field("items"), Each(), Field("v")], result=AsString())
        with self.assertRaises(ExtractionMiss):
            step.process('{"items": []}')

    def test_scalars_are_rendered_as_json(self):
        step = PathLookup(path=[Each()], result=AsString())
        values = [r.value for r in step.process('["s", 1.5, true]')]
        self.assertEqual(values, ["s", "1.5", "true"])

    def test_cardinality(self):
        step = PathLookup(path=[Field("items"), Each(), Field("v")], capture=1, result=AsString())
        self.assertEqual(step.process(self._DOC), [PlainString("1")])

    def test_take_must_be_last(self):
        with self.assertRaises(ConfigError):
            PathLookup(path=[Take(), Field("a")], result=AsString())


class TestShapeResult(unittest.TestCase):
    """Conversion of raw strings into result units."""

    def test_query_url(self):
        unit = shape_result("42", QueryURL("https://e.com/item?x=1", "id"))
        self.assertEqual(unit, URL("https://e.com/item?x=1&id=42"))

    def test_concat_url(self):
        self.assertEqual(shape_result("a/b", ConcatURL("https://e.com/")), URL("https://e.com/a/b"))

    def test_join_without_any_base(self):
        with self.assertRaises(ResultShapeError):
            shape_result("/x", JoinURL())

    def test_relative_text_as_url(self):
        with self.assertRaises(ResultShapeError):
            shape_result("/relative", AsURL())

    def test_non_positive_capture_rejected(self):
        with self.assertRaises(ConfigError):
            Pattern(pattern=r"(\d)", capture=0, result=AsString())


if __name__ == "__main__":
    unittest.main()
