"""
Template resolution for node specs.

Node specs may contain Jinja2 expressions that refer to the run context:

    vars     workflow-level variables
    outputs  completed node outputs, e.g. {{ outputs.build.result.stdout }}
    item     the current element inside a fan-out
    index    the position of the current element inside a fan-out
    items    the collected results of a fan-in's source fan-out

A string that consists of exactly one `{{ expr }}` resolves to the raw
value of the expression (a list stays a list), anything else renders to
text. Resolution is pure: it returns new values and never touches the
workflow or the run state.

Besides the builtin filters, templates get `basename`, `dirname` and `json`
filters plus `read_file(path)` (text) and `loads_file(path)` (parsed JSON).
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Optional

import jinja2
from jinja2 import StrictUndefined

from dagrun.errors import TemplateError
from dagrun.schemas import NodeOutput, SubSpec


WHOLE_EXPRESSION = re.compile(r"^\s*\{\{(?P<expr>(?:(?!\{\{|\}\}).)+)\}\}\s*$", re.DOTALL)


def _read_file(path: str) -> str:
    return Path(path).read_text()


def _loads_file(path: str) -> Any:
    """Parse a JSON file, e.g. {{ loads_file(outputs.scan.result.report) }}."""
    text = Path(path).read_text()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise TemplateError(f"Invalid JSON in {path}: {e}") from e


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _build_environment() -> jinja2.Environment:
    env = jinja2.Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
    )
    env.filters["basename"] = os.path.basename
    env.filters["dirname"] = os.path.dirname
    env.filters["json"] = _to_json
    env.globals["read_file"] = _read_file
    env.globals["loads_file"] = _loads_file
    return env


_ENV = _build_environment()


def build_context(
    vars: dict[str, Any],
    outputs: dict[str, NodeOutput],
    item: Any = None,
    index: Optional[int] = None,
    items: Optional[list[Any]] = None,
) -> dict[str, Any]:
    """
    Build the template context for one node dispatch.

    Args:
        vars: Workflow variables
        outputs: Outputs of completed nodes
        item: Current fan-out element
        index: Current fan-out position
        items: Ordered results of a fan-in's source

    Returns:
        Context dict for resolve()
    """
    context: dict[str, Any] = {
        "vars": vars,
        "outputs": {nid: out.to_dict() for nid, out in outputs.items()},
    }
    if index is not None:
        context["item"] = item
        context["index"] = index
    if items is not None:
        context["items"] = items
    return context


def render_string(template: str, context: dict[str, Any]) -> Any:
    """
    Render a single string.

    Raises:
        TemplateError: If the template is invalid or refers to undefined names
    """
    if "{{" not in template and "{%" not in template:
        return template

    try:
        match = WHOLE_EXPRESSION.match(template)
        if match:
            value = _ENV.compile_expression(match.group("expr"), undefined_to_none=False)(**context)
            if isinstance(value, jinja2.Undefined):
                # Force StrictUndefined to raise with its own message
                str(value)
            return value
        return _ENV.from_string(template).render(**context)
    except jinja2.TemplateError as e:
        raise TemplateError(f"Cannot render {template!r}: {e}") from e
    except OSError as e:
        raise TemplateError(f"Cannot render {template!r}: {e}") from e


def resolve(value: Any, context: dict[str, Any]) -> Any:
    """
    Recursively resolve templates in a value.

    Args:
        value: The value to resolve (may be str, dict, list, or primitive)
        context: Template context from build_context()

    Returns:
        The resolved value

    Raises:
        TemplateError: If any template cannot be rendered
    """
    if isinstance(value, str):
        return render_string(value, context)
    elif isinstance(value, dict):
        return {k: resolve(v, context) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [resolve(v, context) for v in value]
    else:
        return value


def resolve_spec(spec: SubSpec, context: dict[str, Any]) -> SubSpec:
    """Return a copy of a CommandSpec/TaskSpec with every template resolved."""
    return type(spec).from_dict(resolve(spec.to_dict(), context))
