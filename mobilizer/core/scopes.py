"""Operation scope table and the scope predicate.

Each protected operation is named ``"<module>.<operation>"``. Required
scopes are declared in one table, read once at start-up:

    {
        "locations": {
            "scopes": ["locations:read"],                # module level
            "operations": {
                "validate_delimitations": ["locations:validate"],  # handler level
            },
        },
    }

A handler-level entry overrides the module level, even when it is an empty
list. Operations with nothing declared require no scopes.
"""

import json
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, Field

from mobilizer.core.config import Settings
from mobilizer.core.logging_config import get_logger

logger = get_logger(__name__)


DEFAULT_SCOPES: dict[str, dict[str, Any]] = {
    "auth": {
        "scopes": [],
    },
    "locations": {
        "scopes": ["locations:read"],
        "operations": {
            "validate_delimitations": ["locations:read", "locations:validate"],
        },
    },
}


class ModuleScopes(BaseModel):
    """Scope declarations for one module."""

    scopes: list[str] = Field(default_factory=list)
    operations: dict[str, list[str]] = Field(default_factory=dict)


class ScopeRegistry:
    """Immutable lookup of required scopes per operation."""

    def __init__(
        self,
        module_scopes: dict[str, frozenset[str]],
        operation_scopes: dict[str, frozenset[str]],
    ) -> None:
        self._module_scopes = dict(module_scopes)
        self._operation_scopes = dict(operation_scopes)

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any]) -> "ScopeRegistry":
        module_scopes: dict[str, frozenset[str]] = {}
        operation_scopes: dict[str, frozenset[str]] = {}

        for module, raw in mapping.items():
            declared = ModuleScopes.model_validate(raw)
            module_scopes[module] = frozenset(declared.scopes)
            for operation, scopes in declared.operations.items():
                operation_scopes[f"{module}.{operation}"] = frozenset(scopes)

        return cls(module_scopes, operation_scopes)

    def required_scopes(self, operation: str) -> frozenset[str]:
        """Resolve the scopes for ``module.operation`` (handler > module)."""
        if operation in self._operation_scopes:
            return self._operation_scopes[operation]

        module, _, _ = operation.partition(".")
        return self._module_scopes.get(module, frozenset())

    def operations(self) -> list[str]:
        return sorted(self._operation_scopes)


def scopes_satisfied(
    required: Iterable[str], caller_scopes: Iterable[str] | None
) -> bool:
    """
    Return True when the caller may run an operation.

    Nothing required always passes. Otherwise the caller must be present
    (``caller_scopes`` not None) and hold every required scope.
    """
    required_set = set(required)
    if not required_set:
        return True
    if caller_scopes is None:
        return False
    return required_set.issubset(set(caller_scopes))


def missing_scopes(
    required: Iterable[str], caller_scopes: Iterable[str] | None
) -> list[str]:
    held = set(caller_scopes or ())
    return sorted(set(required) - held)


def load_scope_registry(path: str | None = None) -> ScopeRegistry:
    """Build the registry from a JSON file, or the built-in table."""
    if not path:
        return ScopeRegistry.from_mapping(DEFAULT_SCOPES)

    mapping = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(mapping, dict):
        raise ValueError(f"Scope file must contain a JSON object: {path}")
    logger.info(f"Loaded scope table from {path}")
    return ScopeRegistry.from_mapping(mapping)


_registry: ScopeRegistry | None = None


def init_scope_registry(settings: Settings) -> ScopeRegistry:
    """Build the process-wide registry. Call once in the lifespan event."""
    global _registry
    _registry = load_scope_registry(settings.SCOPES_FILE)
    return _registry


def get_scope_registry() -> ScopeRegistry:
    global _registry
    if _registry is None:
        _registry = load_scope_registry(None)
    return _registry
