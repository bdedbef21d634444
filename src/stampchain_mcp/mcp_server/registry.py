"""MCP Server tool registry.

Owns the set of registered tools and a per-category index of their names.
All operations are synchronous so the entries and the index are always
updated together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel

from ..core.errors import (
    CapacityExceededError,
    MCPError,
    ToolNotFoundError,
    ValidationError,
)
from .types import ToolDescriptor, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_CATEGORY = "general"
DEFAULT_VERSION = "1.0.0"


@dataclass
class RegistryConfig:
    """Configuration for the tool registry.

    Attributes:
        validate_on_register: Sanity-check tools before accepting them
        allow_duplicate_names: Replace an existing tool instead of rejecting
        max_tools: Upper bound on the number of registered tools
    """

    validate_on_register: bool = True
    allow_duplicate_names: bool = False
    max_tools: int = 1000


@dataclass
class RegisteredTool:
    """A tool together with its registration bookkeeping."""

    tool: ToolDescriptor
    category: str
    version: str
    registered_at: datetime = field(default_factory=utc_now)
    enabled: bool = True


def check_tool(tool: Any) -> None:
    """Raise ``ValidationError`` if ``tool`` is not a usable descriptor."""
    if not isinstance(tool, ToolDescriptor):
        raise ValidationError("Invalid tool implementation: expected a ToolDescriptor")
    if not isinstance(tool.name, str) or not tool.name.strip():
        raise ValidationError("Tool name must be a non-empty string", field="name")
    if not isinstance(tool.description, str) or not tool.description.strip():
        raise ValidationError(
            f"Tool '{tool.name}' must have a description", field="description"
        )
    schema = tool.input_schema
    if not isinstance(schema, dict) or schema.get("type") != "object":
        raise ValidationError(
            f"Tool '{tool.name}' input schema must be a JSON object schema",
            field="input_schema",
        )
    if not callable(tool.execute):
        raise ValidationError(f"Tool '{tool.name}' execute must be callable", field="execute")
    if tool.params_model is not None and not (
        isinstance(tool.params_model, type) and issubclass(tool.params_model, BaseModel)
    ):
        raise ValidationError(
            f"Tool '{tool.name}' params model must be a pydantic model",
            field="params_model",
        )


class ToolRegistry:
    """Registry of MCP tools grouped by category.

    Maintains:
    - name -> registered tool entries (insertion ordered)
    - category -> tool names in registration order
    - per-tool enabled flag
    """

    def __init__(self, config: Optional[RegistryConfig] = None) -> None:
        self._config = config or RegistryConfig()
        self._tools: dict[str, RegisteredTool] = {}
        self._categories: dict[str, list[str]] = {}

    @property
    def config(self) -> RegistryConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def register(
        self,
        tool: ToolDescriptor,
        *,
        category: str = DEFAULT_CATEGORY,
        version: Optional[str] = None,
    ) -> str:
        """Register a tool.

        Args:
            tool: Tool descriptor to register
            category: Category to file the tool under
            version: Registration version, defaulting to the tool's metadata

        Returns:
            The registered tool name

        Raises:
            ValidationError: If the tool is malformed or the name is taken
            CapacityExceededError: If the registry is full
        """
        if self._config.validate_on_register:
            check_tool(tool)

        name = tool.name
        existing = self._tools.get(name)
        if existing is not None and not self._config.allow_duplicate_names:
            raise ValidationError(f"Tool '{name}' is already registered", field="name")

        if existing is None and len(self._tools) >= self._config.max_tools:
            raise CapacityExceededError(
                f"Maximum number of tools ({self._config.max_tools}) reached",
                resource="tools",
                limit=self._config.max_tools,
            )

        if existing is not None:
            self._remove_from_category(name, existing.category)
            del self._tools[name]
            logger.info("mcp_tool_replaced", name=name, previous_category=existing.category)

        self._tools[name] = RegisteredTool(
            tool=tool,
            category=category,
            version=version or tool.metadata.version or DEFAULT_VERSION,
        )
        self._categories.setdefault(category, []).append(name)

        logger.info(
            "mcp_tool_registered",
            name=name,
            category=category,
            total_tools=len(self._tools),
        )
        return name

    def register_many(
        self,
        tools: Iterable[ToolDescriptor],
        *,
        category: str = DEFAULT_CATEGORY,
        version: Optional[str] = None,
    ) -> list[str]:
        """Register several tools, skipping the ones that fail.

        Returns:
            Names of the tools that were registered
        """
        registered: list[str] = []
        for tool in tools:
            try:
                registered.append(self.register(tool, category=category, version=version))
            except MCPError as e:
                logger.error(
                    "mcp_tool_register_failed",
                    name=getattr(tool, "name", None),
                    error_kind=e.kind.value,
                    error=e.message,
                )
        return registered

    def unregister(self, name: str) -> bool:
        """Unregister a tool.

        Args:
            name: Tool name to unregister

        Returns:
            True if tool was found and removed
        """
        registered = self._tools.pop(name, None)
        if registered is None:
            logger.warning("mcp_tool_unregister_unknown", name=name)
            return False

        self._remove_from_category(name, registered.category)
        logger.info("mcp_tool_unregistered", name=name, category=registered.category)
        return True

    def _remove_from_category(self, name: str, category: str) -> None:
        names = self._categories.get(category)
        if names is None:
            return
        if name in names:
            names.remove(name)
        if not names:
            del self._categories[category]

    def get(self, name: str) -> ToolDescriptor:
        """Get an enabled tool by name.

        Raises:
            ToolNotFoundError: If no tool has this name
            ValidationError: If the tool is disabled
        """
        registered = self._tools.get(name)
        if registered is None:
            raise ToolNotFoundError(name)
        if not registered.enabled:
            raise ValidationError(f"Tool '{name}' is disabled", field="name")
        return registered.tool

    def get_registration(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Enable or disable a tool.

        Returns:
            True if the tool exists
        """
        registered = self._tools.get(name)
        if registered is None:
            logger.warning("mcp_tool_state_change_unknown", name=name, enabled=enabled)
            return False
        registered.enabled = enabled
        logger.info("mcp_tool_state_changed", name=name, enabled=enabled)
        return True

    def enable(self, name: str) -> bool:
        return self.set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self.set_enabled(name, False)

    def is_enabled(self, name: str) -> bool:
        registered = self._tools.get(name)
        return registered.enabled if registered else False

    def get_by_category(self, category: str) -> list[str]:
        """Get tool names in a category, in registration order."""
        return list(self._categories.get(category, ()))

    def get_categories(self) -> list[str]:
        return list(self._categories)

    def get_tools_by_category(self) -> dict[str, list[str]]:
        return {category: list(names) for category, names in self._categories.items()}

    def list_tools(
        self,
        category: Optional[str] = None,
        include_disabled: bool = False,
    ) -> list[dict[str, Any]]:
        """List tools in MCP listing format.

        Args:
            category: Optional category filter
            include_disabled: Whether to list disabled tools too

        Returns:
            Tool definitions in MCP listing format
        """
        if category is not None:
            names = self._categories.get(category, [])
        else:
            names = list(self._tools)

        tools = []
        for name in names:
            registered = self._tools[name]
            if not registered.enabled and not include_disabled:
                continue
            tools.append(registered.tool.to_dict())
        return tools

    def get_stats(self) -> dict[str, Any]:
        """Summarize the registry contents."""
        enabled = sum(1 for registered in self._tools.values() if registered.enabled)
        return {
            "total_tools": len(self._tools),
            "enabled_tools": enabled,
            "disabled_tools": len(self._tools) - enabled,
            "categories": list(self._categories),
            "tools_by_category": {
                category: len(names) for category, names in self._categories.items()
            },
        }

    def clear(self) -> None:
        self._tools.clear()
        self._categories.clear()
        logger.info("mcp_tool_registry_cleared")

    def export(self) -> dict[str, Any]:
        """Snapshot of registrations and configuration for persistence."""
        return {
            "tools": [
                {
                    "name": name,
                    "version": registered.version,
                    "enabled": registered.enabled,
                    "registered_at": registered.registered_at.isoformat(),
                    "category": registered.category,
                }
                for name, registered in self._tools.items()
            ],
            "config": {
                "validate_on_register": self._config.validate_on_register,
                "allow_duplicate_names": self._config.allow_duplicate_names,
                "max_tools": self._config.max_tools,
            },
        }

    def validate(self) -> list[dict[str, Any]]:
        """Re-check every registered tool.

        Returns:
            One result per tool with ``name``, ``valid`` and optional ``error``
        """
        results: list[dict[str, Any]] = []
        for name, registered in self._tools.items():
            try:
                check_tool(registered.tool)
            except ValidationError as e:
                results.append({"name": name, "valid": False, "error": e.message})
            else:
                results.append({"name": name, "valid": True})
        return results
