"""Parameter signatures for proxied tools.

A signature is a compact, comma-separated list of ``name:type`` tokens such
as ``a:int,b:int``. Signatures are documentation: parsing is permissive and
never fails, so a typo in a type can never block a registration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PARAM_TYPES: tuple[str, ...] = ("int", "float", "string", "bool")

_TYPE_ALIASES: dict[str, str] = {
    "int": "int",
    "integer": "int",
    "float": "float",
    "number": "float",
    "double": "float",
    "string": "string",
    "str": "string",
    "text": "string",
    "bool": "bool",
    "boolean": "bool",
}

_JSON_SCHEMA_TYPES: dict[str, str] = {
    "int": "integer",
    "float": "number",
    "string": "string",
    "bool": "boolean",
}


@dataclass(frozen=True)
class Parameter:
    """A single named, typed tool parameter.

    Attributes:
        name: Parameter name, also the environment variable it is bound to.
        type: One of ``"int"``, ``"float"``, ``"string"`` or ``"bool"``.
    """

    name: str
    type: str = "string"


ParameterSpec = tuple[Parameter, ...]


def normalize_type(token: str) -> str:
    """Map a type token to a supported type, defaulting to ``"string"``."""

    return _TYPE_ALIASES.get(token.strip().lower(), "string")


def parse_signature(signature: str | None) -> ParameterSpec:
    """Parse a ``name:type,...`` signature into an ordered parameter spec.

    Each token is split on its first colon; a token without a colon names a
    string parameter. Tokens with an empty name are skipped, and a repeated
    name keeps its first position but takes the later type.

    Args:
        signature: The raw signature string. ``None`` or blank yields an
            empty spec.

    Returns:
        A tuple of :class:`Parameter` in signature order.
    """

    if not signature or not signature.strip():
        return ()

    types_by_name: dict[str, str] = {}
    for token in signature.split(","):
        name, sep, type_token = token.partition(":")
        name = name.strip()
        if not name:
            continue
        types_by_name[name] = normalize_type(type_token) if sep else "string"

    return tuple(Parameter(name=name, type=kind) for name, kind in types_by_name.items())


def format_signature(spec: ParameterSpec) -> str:
    """Render a parameter spec back into its ``name:type,...`` form."""

    return ",".join(f"{param.name}:{param.type}" for param in spec)


def spec_from_list(items: list[Any]) -> ParameterSpec:
    """Build a spec from a list of ``{"name": ..., "type": ...}`` objects.

    Entries that are not objects or lack a string name are ignored, matching
    the permissive handling of signature strings.
    """

    types_by_name: dict[str, str] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        raw_type = item.get("type")
        types_by_name[name.strip()] = normalize_type(raw_type) if isinstance(raw_type, str) else "string"

    return tuple(Parameter(name=name, type=kind) for name, kind in types_by_name.items())


def build_input_schema(spec: ParameterSpec) -> dict[str, Any]:
    """Build the JSON Schema advertised for a tool's input.

    No property is marked required: absent parameters are simply not bound
    and the script decides how to handle them.

    Args:
        spec: The tool's parameter spec.

    Returns:
        An object schema with one scalar property per parameter.
    """

    properties: dict[str, Any] = {}
    for param in spec:
        properties[param.name] = {"type": _JSON_SCHEMA_TYPES.get(param.type, "string")}

    return {"type": "object", "properties": properties}
