"""Evaluation of condition-node expressions.

Expressions are written with JavaScript operators (``===``, ``&&``, ``!``,
``true``/``null``). They are rewritten to Python outside of string literals
and evaluated with no builtins against the run variables. Unknown names
evaluate to ``None``.
"""

import re
from typing import Any, Dict, Mapping

from .exceptions import NodeExecutionError

_STRING_LITERAL = re.compile(r"""('(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")""")

_REWRITES = [
    (re.compile(r"!=="), " != "),
    (re.compile(r"==="), " == "),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
]


class _Namespace(dict):
    """Variable lookup where missing names resolve to None and keys read as attributes."""

    def __missing__(self, key):
        return None

    def __getattr__(self, name):
        return self[name]


def _wrap(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _Namespace({key: _wrap(item) for key, item in value.items()})
    if isinstance(value, list):
        return [_wrap(item) for item in value]
    return value


def translate(expression: str) -> str:
    """Rewrite JavaScript-style operators to Python, leaving string literals intact."""
    parts = _STRING_LITERAL.split(expression)
    translated = []
    for index, part in enumerate(parts):
        if index % 2 == 1:
            translated.append(part)
            continue
        for pattern, replacement in _REWRITES:
            part = pattern.sub(replacement, part)
        translated.append(part)
    return "".join(translated).strip()


def evaluate_condition(expression: str, variables: Dict[str, Any], node_id: str = None) -> bool:
    """Evaluate ``expression`` against ``variables``.

    Raises:
        NodeExecutionError: If the expression cannot be parsed or evaluated
    """
    python_expression = translate(expression)
    try:
        code = compile(python_expression, "<condition>", "eval")
    except SyntaxError as e:
        raise NodeExecutionError(
            f"Invalid condition expression '{expression}': {e.msg}", node_id=node_id
        ) from e

    try:
        result = eval(code, {"__builtins__": {}}, _wrap(variables))
    except Exception as e:
        raise NodeExecutionError(
            f"Failed to evaluate condition '{expression}': {e}", node_id=node_id
        ) from e
    return bool(result)
