"""Tests for {{path}} interpolation and condition evaluation."""

import pytest

from workflow.interpolation import (
    UNRESOLVED,
    evaluate_condition,
    get_value_by_path,
    interpolate,
    resolve_path,
    to_template_string,
    translate_expression,
)


@pytest.fixture
def scope():
    return {
        "input": {"order_id": "A-17", "count": 7, "mode": "full", "flag": False},
        "variables": {
            "fetch": {"status": 200, "data": {"n": 4, "items": [{"sku": "x1"}, {"sku": "x2"}]}},
            "empty": None,
        },
        "metadata": {"trigger_id": "t-1"},
    }


@pytest.mark.unit
class TestResolvePath:

    def test_nested_dict(self, scope):
        assert resolve_path(scope, "variables.fetch.data.n") == 4

    def test_list_index_segment(self, scope):
        assert resolve_path(scope, "variables.fetch.data.items[1].sku") == "x2"

    def test_numeric_segment_indexes_list(self, scope):
        assert resolve_path(scope, "variables.fetch.data.items.0.sku") == "x1"

    def test_length_of_list(self, scope):
        assert resolve_path(scope, "variables.fetch.data.items.length") == 2

    def test_missing_key_is_unresolved(self, scope):
        assert resolve_path(scope, "input.nope") is UNRESOLVED

    def test_none_before_last_segment_is_unresolved(self, scope):
        assert resolve_path(scope, "variables.empty.field") is UNRESOLVED

    def test_none_at_end_is_returned(self, scope):
        assert resolve_path(scope, "variables.empty") is None

    def test_out_of_range_index(self, scope):
        assert resolve_path(scope, "variables.fetch.data.items[5]") is UNRESOLVED

    def test_get_value_by_path_default(self, scope):
        assert get_value_by_path(scope, "input.nope", default="fallback") == "fallback"
        assert get_value_by_path(scope, "input.count") == 7


@pytest.mark.unit
class TestInterpolate:

    def test_whole_placeholder_keeps_type(self, scope):
        assert interpolate("{{variables.fetch.data}}", scope) == scope["variables"]["fetch"]["data"]
        assert interpolate("{{ input.count }}", scope) == 7

    def test_embedded_placeholder_is_stringified(self, scope):
        assert interpolate("/orders/{{input.order_id}}?n={{input.count}}", scope) == "/orders/A-17?n=7"

    def test_embedded_booleans_and_null_use_json_words(self, scope):
        assert interpolate("flag={{input.flag}} empty={{variables.empty}}", scope) == "flag=false empty=null"

    def test_embedded_dict_is_compact_json(self, scope):
        assert interpolate("d={{variables.fetch.data.items[0]}}", scope) == 'd={"sku":"x1"}'

    def test_unresolved_embedded_placeholder_is_kept(self, scope):
        assert interpolate("a {{input.missing}} b", scope) == "a {{input.missing}} b"

    def test_unresolved_whole_placeholder_is_none(self, scope):
        assert interpolate("{{input.missing}}", scope) is None

    def test_walks_dicts_and_lists(self, scope):
        template = {
            "url": "https://api.example.com/{{input.order_id}}",
            "tags": ["{{metadata.trigger_id}}", 3, None],
            "nested": {"n": "{{variables.fetch.data.n}}"},
        }
        assert interpolate(template, scope) == {
            "url": "https://api.example.com/A-17",
            "tags": ["t-1", 3, None],
            "nested": {"n": 4},
        }

    def test_non_string_scalars_pass_through(self, scope):
        assert interpolate(12, scope) == 12
        assert interpolate(True, scope) is True

    def test_to_template_string_whole_float(self):
        assert to_template_string(3.0) == "3"
        assert to_template_string(2.5) == "2.5"


@pytest.mark.unit
class TestConditions:

    def test_translate_javascript_operators(self):
        assert translate_expression("a === 1 && b !== 2 || !c") == "a == 1  and  b != 2  or   not c"

    def test_translate_leaves_string_literals_alone(self):
        assert translate_expression("x === 'a && b'") == "x == 'a && b'"

    def test_translate_literals(self):
        assert translate_expression("x === null || y === true") == "x == None  or  y == True"

    def test_compound_expression(self, scope):
        assert evaluate_condition("input.count > 5 && input.mode === 'full'", scope) is True
        assert evaluate_condition("input.count > 5 && input.mode === 'lite'", scope) is False

    def test_negation(self, scope):
        assert evaluate_condition("!input.flag", scope) is True

    def test_step_output_and_length(self, scope):
        assert evaluate_condition("variables.fetch.status == 200", scope) is True
        assert evaluate_condition("variables.fetch.data.items.length >= 2", scope) is True

    def test_placeholder_condition(self, scope):
        assert evaluate_condition("{{input.count}} > 3", scope) is True

    def test_boolean_literal_condition(self, scope):
        assert evaluate_condition(True, scope) is True
        assert evaluate_condition(False, scope) is False

    def test_invalid_syntax_is_false(self, scope):
        assert evaluate_condition("input.count >>> ", scope) is False

    def test_unknown_name_is_false(self, scope):
        assert evaluate_condition("nothing_here > 1", scope) is False

    def test_missing_key_reads_as_undefined(self, scope):
        assert evaluate_condition("input.dry_run !== true", scope) is True
        assert evaluate_condition("!input.dry_run", scope) is True
        assert evaluate_condition("input.dry_run === undefined", scope) is True
        assert evaluate_condition("input.dry_run === true", scope) is False

    def test_missing_attribute_is_false(self, scope):
        assert evaluate_condition("input.absent.deeper == 1", scope) is False

    def test_never_evaluates_python_builtins(self, scope):
        assert evaluate_condition("__import__('os').getcwd()", scope) is False
