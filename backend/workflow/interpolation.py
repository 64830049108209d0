"""
Variable interpolation and condition evaluation.

Step configs reference runtime data with ``{{path.expr}}`` placeholders:

    {{input.order_id}}            caller-supplied payload
    {{variables.fetch.data}}      output of the step named "fetch"
    {{variables.items[0].sku}}    one level of list indexing per segment
    {{metadata.trigger_id}}       side-channel data

Conditions use familiar JavaScript-style boolean syntax
(``variables.count > 5 && input.mode === 'full'``) and are evaluated
with simpleeval, never with ``eval``.
"""

import json
import re
from typing import Any

import structlog
from simpleeval import DEFAULT_FUNCTIONS, EvalWithCompoundTypes

logger = structlog.get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_INDEXED_SEGMENT = re.compile(r"^(\w+)\[(\d+)\]$")


class _Unresolved:
    """Marker for a path that does not resolve (JavaScript ``undefined``)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()


# ─── Path resolution ───────────────────────────────────────────

def _lookup(container: Any, key: Any) -> Any:
    if isinstance(container, dict):
        return container.get(key, UNRESOLVED)

    if isinstance(container, (list, tuple, str)):
        if key == "length":
            return len(container)
        if isinstance(key, str) and key.isdigit():
            key = int(key)
        if isinstance(key, int) and 0 <= key < len(container):
            return container[key]
        return UNRESOLVED

    if isinstance(key, str) and key and not key.startswith("_"):
        return getattr(container, key, UNRESOLVED)
    return UNRESOLVED


def resolve_path(obj: Any, path: str) -> Any:
    """Resolve a dotted path, returning ``UNRESOLVED`` when any segment is missing.

    A ``None`` met before the last segment also yields ``UNRESOLVED``;
    a ``None`` stored at the end of the path is returned as-is.
    """
    current = obj
    for part in path.split("."):
        if current is None:
            return UNRESOLVED

        match = _INDEXED_SEGMENT.match(part)
        if match:
            current = _lookup(current, match.group(1))
            if current is UNRESOLVED or current is None:
                return UNRESOLVED
            current = _lookup(current, int(match.group(2)))
        else:
            current = _lookup(current, part)

        if current is UNRESOLVED:
            return UNRESOLVED
    return current


def get_value_by_path(obj: Any, path: str, default: Any = None) -> Any:
    """Public path lookup: unresolved paths return ``default``."""
    value = resolve_path(obj, path)
    return default if value is UNRESOLVED else value


# ─── Interpolation ─────────────────────────────────────────────

def to_template_string(value: Any) -> str:
    """String form used when a placeholder sits inside literal text."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, separators=(",", ":"))
    return str(value)


def _interpolate_string(template: str, context: Any) -> Any:
    whole = PLACEHOLDER_PATTERN.fullmatch(template)
    if whole:
        value = resolve_path(context, whole.group(1).strip())
        return None if value is UNRESOLVED else value

    def replace(match: re.Match) -> str:
        value = resolve_path(context, match.group(1).strip())
        if value is UNRESOLVED:
            return match.group(0)
        return to_template_string(value)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def interpolate(template: Any, context: Any) -> Any:
    """Replace ``{{path}}`` placeholders in ``template`` with values from ``context``.

    Lists and dicts are walked recursively; other non-string values are
    returned unchanged. A string that is exactly one placeholder resolves
    to the raw value (dict, list, number...). Placeholders embedded in
    text are stringified, and unresolved ones are kept verbatim.
    """
    if isinstance(template, str):
        if "{{" not in template:
            return template
        return _interpolate_string(template, context)
    if isinstance(template, (list, tuple)):
        return [interpolate(item, context) for item in template]
    if isinstance(template, dict):
        return {key: interpolate(value, context) for key, value in template.items()}
    return template


# ─── Condition evaluation ──────────────────────────────────────

_JS_TOKEN = re.compile(
    r"""
    (?P<string>'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")
    | (?P<strict>===|!==)
    | (?P<logical>&&|\|\|)
    | (?P<negation>!(?!=))
    | (?P<literal>\b(?:true|false|null|undefined)\b)
    """,
    re.VERBOSE,
)

_JS_REPLACEMENTS = {
    "===": "==",
    "!==": "!=",
    "&&": " and ",
    "||": " or ",
    "!": " not ",
    "true": "True",
    "false": "False",
    "null": "None",
    "undefined": "None",
}


def translate_expression(expression: str) -> str:
    """Rewrite JavaScript boolean syntax into the Python subset simpleeval parses.

    String literals are copied through untouched.
    """

    def replace(match: re.Match) -> str:
        if match.group("string") is not None:
            return match.group(0)
        return _JS_REPLACEMENTS[match.group(0)]

    return _JS_TOKEN.sub(replace, expression).strip()


class _Namespace:
    """Read-only attribute view over a dict for condition expressions.

    Deliberately not a Mapping: a key such as ``items`` or ``keys`` must
    resolve to data, not to a dict method.
    """

    __slots__ = ("_data",)

    def __init__(self, data: dict):
        object.__setattr__(self, "_data", data)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        # Missing keys read as undefined; going deeper still raises.
        return _wrap(self._data.get(name))

    def __setattr__(self, name, value):
        raise AttributeError("condition context is read-only")

    def __getitem__(self, key: Any) -> Any:
        return _wrap(self._data[key])

    def __contains__(self, key: Any) -> bool:
        return key in self._data

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, _Namespace):
            return self._data == other._data
        return self._data == other

    def __hash__(self):
        return id(self)

    def __repr__(self) -> str:
        return f"_Namespace({self._data!r})"


class _Sequence(list):
    """List with a JavaScript-style ``length`` attribute."""

    @property
    def length(self) -> int:
        return len(self)


def _wrap(value: Any) -> Any:
    if isinstance(value, dict):
        return _Namespace(value)
    if isinstance(value, (list, tuple)):
        return _Sequence(_wrap(item) for item in value)
    return value


_CONDITION_FUNCTIONS = {**DEFAULT_FUNCTIONS, "len": len, "bool": bool}


def evaluate_condition(expression: Any, context: dict[str, Any]) -> bool:
    """Evaluate a boolean expression against ``context``. Never raises.

    The expression is interpolated first, then evaluated with every
    top-level key of ``context`` bound as a name. Any failure (syntax,
    unknown name, attribute of a missing value) yields ``False``.
    """
    try:
        resolved = interpolate(expression, context)
        if resolved is None or isinstance(resolved, (bool, int, float)):
            return bool(resolved)
        if not isinstance(resolved, str):
            return False

        evaluator = EvalWithCompoundTypes(
            names={key: _wrap(value) for key, value in context.items()},
            functions=_CONDITION_FUNCTIONS,
        )
        return bool(evaluator.eval(translate_expression(resolved)))
    except Exception as e:
        logger.debug(
            "Condition evaluated to false after error",
            expression=str(expression)[:200],
            error=str(e),
        )
        return False
