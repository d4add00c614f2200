from __future__ import annotations

import json
from typing import Any

import yaml
from lark import Token

from prettylisp.pl_datatypes import NodeBlock, Number, String, Variable, Call, Node


# --------------------------
# Helpers
# --------------------------

def _to_builtin(obj: Any) -> Any:
    """Converts AST nodes, tokens and runtime values into plain dicts, lists and scalars."""
    match obj:
        case NodeBlock():
            return {'kind': obj.kind, 'line': obj.line, 'nodes': [_to_builtin(n) for n in obj.nodes]}
        case Number() | String():
            return {'kind': obj.kind, 'line': obj.line, 'value': obj.value}
        case Variable():
            return {'kind': obj.kind, 'line': obj.line, 'name': obj.name}
        case Call():
            return {'kind': obj.kind, 'line': obj.line, 'name': obj.name,
                    'args': [_to_builtin(a) for a in obj.args]}
        case Node():
            return {'kind': obj.kind, 'line': obj.line}
        case Token():
            return {'type': obj.type, 'value': str(obj), 'line': obj.line}
        case list() | tuple():
            return [_to_builtin(x) for x in obj]
    return obj


# --------------------------
# Public API
# --------------------------

def serialize(value: Any, *, fmt: str = 'yaml', pretty: bool = True) -> str:
    """
    Convert an AST node, token list or runtime value into a textual representation.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value)
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "serialize",
]
