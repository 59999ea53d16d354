"""Tool registry: convert configured tool definitions into callable tools."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from switchyard.errors import ChainError, RunErrorCode, ToolBuildError
from switchyard.result import Failure, Success

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

_TOOL_NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_JSON_TYPES = frozenset(
    {"string", "number", "integer", "boolean", "object", "array", "null"}
)
_SCHEMA_KEYWORDS = ("type", "anyOf", "oneOf", "allOf", "enum", "const", "$ref")


@dataclass(frozen=True)
class Tool:
    """A function the model may call, in provider-neutral form."""

    name: str
    description: str
    #: Object-typed JSON schema of the call arguments.
    parameters: dict[str, Any]


def _check_type(value: Any, where: str) -> None:
    types = value if isinstance(value, list) else [value]
    for t in types:
        if t not in _JSON_TYPES:
            raise ToolBuildError(f"{where} has unsupported type {t!r}")


def _check_property(name: str, schema: Any, where: str) -> None:
    where = f"{where}.{name}"
    if not isinstance(schema, dict):
        raise ToolBuildError(f"{where} must be a schema object")
    if not any(k in schema for k in _SCHEMA_KEYWORDS):
        raise ToolBuildError(
            f"{where} must declare a type",
            hint="Add 'type' (or anyOf/oneOf/enum/$ref) to each property.",
        )
    if "type" in schema:
        _check_type(schema["type"], where)
    if schema.get("type") == "object" and "properties" in schema:
        _check_object_schema(schema, where)
    items = schema.get("items")
    if isinstance(items, dict) and items:
        _check_property("items", items, where)


def _check_object_schema(schema: dict[str, Any], where: str) -> None:
    properties = schema.get("properties", {})
    if not isinstance(properties, dict):
        raise ToolBuildError(f"{where}.properties must be a mapping")
    for prop_name, prop_schema in properties.items():
        _check_property(prop_name, prop_schema, where)
    required = schema.get("required", [])
    if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
        raise ToolBuildError(f"{where}.required must be a list of property names")
    unknown = [r for r in required if r not in properties]
    if unknown:
        raise ToolBuildError(
            f"{where}.required lists undeclared properties: {', '.join(unknown)}"
        )


def build_tool(name: str, definition: Mapping[str, Any]) -> Tool:
    """Validate one tool definition and return its `Tool`.

    Raises:
        ToolBuildError: If the name, description or parameter schema is malformed.
    """
    if not isinstance(name, str) or not _TOOL_NAME_RE.fullmatch(name):
        raise ToolBuildError(
            f"Invalid tool name: {name!r}",
            hint="Use 1-64 letters, digits, underscores or dashes.",
        )
    if not isinstance(definition, dict):
        raise ToolBuildError(f"Tool {name!r} definition must be a mapping")

    description = definition.get("description", "")
    if not isinstance(description, str):
        raise ToolBuildError(f"Tool {name!r} description must be a string")

    parameters: Any = definition.get("parameters", {"type": "object", "properties": {}})
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        parameters = parameters.model_json_schema()
    if not isinstance(parameters, dict):
        raise ToolBuildError(
            f"Tool {name!r} parameters must be a JSON schema object",
            hint="Pass a dict schema or a pydantic BaseModel subclass.",
        )
    if parameters.get("type") != "object":
        raise ToolBuildError(
            f"Tool {name!r} parameters must have type 'object'",
            hint="Tool arguments are always passed as a JSON object.",
        )
    _check_object_schema(parameters, f"{name}.parameters")

    normalized = dict(parameters)
    normalized.setdefault("properties", {})
    return Tool(name=name, description=description, parameters=normalized)


def build_tools(
    definitions: Mapping[str, Mapping[str, Any]] | None,
) -> Success[dict[str, Tool]] | Failure[ChainError]:
    """Build the tool registry for one call, all or nothing.

    Empty or absent definitions produce an empty registry. A single malformed
    definition fails the whole build.
    """
    if not definitions:
        return Success({})

    tools: dict[str, Tool] = {}
    problems: list[str] = []
    for name, definition in definitions.items():
        try:
            tools[name] = build_tool(name, definition)
        except ToolBuildError as e:
            problems.append(str(e))

    if problems:
        logger.debug("Rejected tool definitions: %s", problems)
        return Failure(
            ChainError(
                code=RunErrorCode.AI_RUN_ERROR,
                message="Invalid tool definitions:\n"
                + "\n".join(f"- {p}" for p in problems),
                details={"problems": problems},
            )
        )
    return Success(tools)
