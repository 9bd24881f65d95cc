from __future__ import annotations

import inspect
import types
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

JsonSchema = Dict[str, Any]
ToolHandler = Callable[..., Awaitable[Any]]


def _json_schema(annotation: Any) -> JsonSchema:
    origin = get_origin(annotation)
    if origin is None:
        mapping = {
            str: "string",
            int: "integer",
            float: "number",
            bool: "boolean",
            dict: "object",
            list: "array",
        }
        return {"type": mapping.get(annotation, "string")}
    if origin is Literal:
        values = list(get_args(annotation))
        return {"type": "string", "enum": values}
    if origin in (list, List, tuple, Tuple):
        args = get_args(annotation)
        schema: JsonSchema = {"type": "array"}
        if args:
            schema["items"] = _json_schema(args[0])
        return schema
    if origin in (dict, Dict):
        return {"type": "object"}
    if origin in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        return _json_schema(args[0]) if args else {"type": "string"}
    return {"type": "string"}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    func: ToolHandler
    description: str
    mutates: bool
    tags: Tuple[str, ...]
    signature: inspect.Signature
    hints: Mapping[str, Any]
    param_docs: Mapping[str, str]

    @property
    def arguments(self) -> List[inspect.Parameter]:
        # The first parameter is the execution context, never a model argument.
        return list(self.signature.parameters.values())[1:]

    @property
    def parameter_names(self) -> frozenset[str]:
        return frozenset(param.name for param in self.arguments)

    @property
    def required(self) -> Tuple[str, ...]:
        return tuple(param.name for param in self.arguments if param.default is inspect.Parameter.empty)

    @property
    def parameter_schema(self) -> JsonSchema:
        schema: JsonSchema = {"type": "object", "properties": {}, "required": []}
        for param in self.arguments:
            prop = _json_schema(self.hints.get(param.name, str))
            if param.name in self.param_docs:
                prop["description"] = self.param_docs[param.name]
            schema["properties"][param.name] = prop
            if param.default is inspect.Parameter.empty:
                schema["required"].append(param.name)
        return schema

    def as_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameter_schema,
            },
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "mutates": self.mutates,
            "tags": list(self.tags),
            "parameters": self.parameter_schema,
        }


REGISTRY: Dict[str, ToolSpec] = {}


def register_tool(
    name: str,
    *,
    description: str,
    mutates: bool = False,
    params: Optional[Mapping[str, str]] = None,
    tags: Optional[Iterable[str]] = None,
) -> Callable[[ToolHandler], ToolHandler]:
    def decorator(func: ToolHandler) -> ToolHandler:
        if name in REGISTRY:
            raise ValueError(f"Tool '{name}' is already registered.")
        hints = get_type_hints(func)
        hints.pop("return", None)
        REGISTRY[name] = ToolSpec(
            name=name,
            func=func,
            description=description,
            mutates=mutates,
            tags=tuple(tags or ()),
            signature=inspect.signature(func),
            hints=hints,
            param_docs=dict(params or {}),
        )
        return func

    return decorator


def get_tool(name: str) -> Optional[ToolSpec]:
    return REGISTRY.get(name)


def get_tools() -> List[ToolSpec]:
    return list(REGISTRY.values())


def tool_catalog() -> List[Dict[str, Any]]:
    """Tool definitions in the chat-completions ``tools`` format."""

    return [spec.as_tool() for spec in get_tools()]


def mutating_tool_names() -> frozenset[str]:
    return frozenset(spec.name for spec in get_tools() if spec.mutates)
