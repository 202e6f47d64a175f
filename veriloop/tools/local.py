"""
In-process tool provider built from typed Python functions.

The JSON Schema for each tool is derived from the function signature:
``Annotated[T, "description"]`` supplies parameter descriptions, parameters
without a default (and not Optional) are required, and the first docstring
line becomes the tool description.

Usage::

    from typing import Annotated

    calc = FunctionToolProvider("calculator")

    @calc.tool
    async def add(a: Annotated[int, "First addend"], b: int = 0) -> int:
        \"\"\"Add two integers.\"\"\"
        return a + b

    registry.add_provider(calc)
"""

import asyncio
import inspect
from typing import (
    Annotated,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from .models import ToolDefinition

_NoneType = type(None)

_PRIMITIVES: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


def _strip_annotated(annotation: Any) -> Any:
    if get_origin(annotation) is Annotated:
        return get_args(annotation)[0]
    return annotation


def _annotated_description(annotation: Any) -> Optional[str]:
    if get_origin(annotation) is not Annotated:
        return None
    for extra in get_args(annotation)[1:]:
        if isinstance(extra, str):
            return extra
    return None


def _is_optional(annotation: Any) -> bool:
    return get_origin(annotation) is Union and _NoneType in get_args(annotation)


def _type_to_schema(annotation: Any) -> Dict[str, Any]:
    """Map a Python type annotation to a JSON Schema fragment."""
    base = _strip_annotated(annotation)
    if get_origin(base) is Union:
        non_none = [a for a in get_args(base) if a is not _NoneType]
        if len(non_none) == 1:
            return _type_to_schema(non_none[0])
    if base in _PRIMITIVES:
        return {"type": _PRIMITIVES[base]}
    origin = get_origin(base)
    if base is list or origin is list:
        schema: Dict[str, Any] = {"type": "array"}
        args = get_args(base)
        if args:
            schema["items"] = _type_to_schema(args[0])
        return schema
    if base is dict or origin is dict:
        return {"type": "object"}
    return {"type": "string"}


def build_parameters_schema(func: Callable) -> Dict[str, Any]:
    """Build ``{"type": "object", ...}`` from ``func``'s signature."""
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func, include_extras=True)
    except (NameError, TypeError):
        hints = {}

    properties: Dict[str, Any] = {}
    required: List[str] = []
    for name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(name, param.annotation)
        if annotation is inspect.Parameter.empty:
            annotation = str

        prop = _type_to_schema(annotation)
        desc = _annotated_description(annotation)
        if desc:
            prop["description"] = desc
        properties[name] = prop

        if param.default is inspect.Parameter.empty and not _is_optional(_strip_annotated(annotation)):
            required.append(name)

    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


class FunctionToolProvider:
    """Tool provider serving plain Python callables (sync or async)."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._functions: Dict[str, Callable] = {}
        self._definitions: Dict[str, ToolDefinition] = {}

    @property
    def name(self) -> str:
        return self._name

    def add(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ToolDefinition:
        """Register ``func`` as a tool and return its definition."""
        tool_name = name or func.__name__
        if description is None:
            doc = inspect.getdoc(func) or ""
            description = doc.split("\n")[0].strip() if doc else tool_name
        definition = ToolDefinition(
            name=tool_name,
            provider=self._name,
            description=description,
            parameters=build_parameters_schema(func),
        )
        self._functions[tool_name] = func
        self._definitions[tool_name] = definition
        return definition

    def tool(self, func: Callable) -> Callable:
        """Decorator form of :meth:`add`; returns the function unchanged."""
        self.add(func)
        return func

    async def list_tools(self) -> List[ToolDefinition]:
        return list(self._definitions.values())

    async def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> Any:
        func = self._functions.get(tool_name)
        if func is None:
            raise KeyError(f"Unknown tool: {tool_name}")
        if asyncio.iscoroutinefunction(func):
            return await func(**arguments)
        return await asyncio.to_thread(func, **arguments)

    def __repr__(self) -> str:
        return f"FunctionToolProvider(name='{self._name}', tools={len(self._functions)})"
