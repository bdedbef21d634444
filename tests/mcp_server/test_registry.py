"""Tests for the MCP tool registry."""

from dataclasses import replace

import pytest
from pydantic import BaseModel

from stampchain_mcp.core.errors import (
    CapacityExceededError,
    ToolNotFoundError,
    ValidationError,
)
from stampchain_mcp.mcp_server.registry import RegistryConfig, ToolRegistry
from stampchain_mcp.mcp_server.types import ToolMetadata
from stampchain_mcp.tools.stamps import create_get_stamp_tool, create_search_stamps_tool


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_and_get(self, make_tool):
        """Test registering and retrieving a tool."""
        registry = ToolRegistry()
        tool = make_tool()
        assert registry.register(tool) == "echo"
        assert registry.get("echo") is tool
        assert "echo" in registry
        assert len(registry) == 1

    def test_get_unknown(self):
        """Test that an unknown name raises ToolNotFoundError."""
        registry = ToolRegistry()
        with pytest.raises(ToolNotFoundError, match="Tool 'missing' not found"):
            registry.get("missing")

    def test_register_duplicate_rejected(self, make_tool):
        """Test that duplicate names are rejected by default."""
        registry = ToolRegistry()
        registry.register(make_tool())
        with pytest.raises(ValidationError, match="already registered"):
            registry.register(make_tool())
        assert len(registry) == 1

    def test_register_duplicate_replaces(self, make_tool):
        """Test that duplicates replace the old entry when allowed."""
        registry = ToolRegistry(RegistryConfig(allow_duplicate_names=True))
        registry.register(make_tool("a"), category="first")
        registry.register(make_tool("b"), category="second")
        replacement = make_tool("a", description="Replacement")
        registry.register(replacement, category="second")

        assert registry.get("a") is replacement
        assert len(registry) == 2
        assert registry.get_categories() == ["second"]
        assert registry.get_by_category("second") == ["b", "a"]

    def test_max_tools(self):
        """Test the capacity bound with real tools."""
        registry = ToolRegistry(RegistryConfig(max_tools=1))
        registry.register(create_get_stamp_tool())
        with pytest.raises(CapacityExceededError, match=r"Maximum number of tools \(1\) reached"):
            registry.register(create_search_stamps_tool())
        assert registry.list_tools()[0]["name"] == "get_stamp"

    def test_replace_at_capacity(self, make_tool):
        """Test that replacing does not count against the capacity."""
        registry = ToolRegistry(RegistryConfig(max_tools=1, allow_duplicate_names=True))
        registry.register(make_tool())
        registry.register(make_tool(description="Again"))
        assert registry.get("echo").description == "Again"

    @pytest.mark.parametrize(
        "changes,field",
        [
            ({"name": ""}, "name"),
            ({"description": "  "}, "description"),
            ({"input_schema": {"type": "array"}}, "input_schema"),
            ({"execute": "not-callable"}, "execute"),
            ({"params_model": dict}, "params_model"),
        ],
    )
    def test_validation_on_register(self, make_tool, changes, field):
        """Test that malformed tools are rejected."""
        registry = ToolRegistry()
        tool = replace(make_tool(), **changes)
        with pytest.raises(ValidationError) as exc_info:
            registry.register(tool)
        assert exc_info.value.data["field"] == field
        assert len(registry) == 0

    def test_rejects_non_descriptor(self):
        """Test that arbitrary objects are rejected."""
        with pytest.raises(ValidationError, match="Invalid tool implementation"):
            ToolRegistry().register(object())

    def test_validation_disabled(self, make_tool):
        """Test that validation can be switched off."""
        registry = ToolRegistry(RegistryConfig(validate_on_register=False))
        registry.register(replace(make_tool(), description=""))
        results = registry.validate()
        assert results == [
            {"name": "echo", "valid": False, "error": "Tool 'echo' must have a description"}
        ]

    def test_register_many_skips_failures(self, make_tool):
        """Test bulk registration."""
        registry = ToolRegistry()
        names = registry.register_many(
            [make_tool("a"), replace(make_tool("b"), description=""), make_tool("c")],
            category="bulk",
        )
        assert names == ["a", "c"]
        assert registry.get_by_category("bulk") == ["a", "c"]

    def test_unregister(self, make_tool):
        """Test unregistering a tool."""
        registry = ToolRegistry()
        registry.register(make_tool(), category="misc")
        assert registry.unregister("echo") is True
        assert registry.unregister("echo") is False
        assert registry.get_categories() == []
        assert "echo" not in registry

    def test_enable_disable(self, make_tool):
        """Test toggling a tool."""
        registry = ToolRegistry()
        registry.register(make_tool())
        assert registry.disable("echo") is True
        assert registry.is_enabled("echo") is False
        with pytest.raises(ValidationError, match="disabled"):
            registry.get("echo")
        assert registry.list_tools() == []
        assert len(registry.list_tools(include_disabled=True)) == 1

        registry.enable("echo")
        assert registry.get("echo").name == "echo"
        assert registry.set_enabled("missing", True) is False

    def test_list_tools_by_category(self, make_tool):
        """Test listing in MCP format with a category filter."""
        registry = ToolRegistry()
        registry.register(make_tool("a"), category="x")
        registry.register(make_tool("b"), category="y")
        registry.register(make_tool("c"), category="x")

        assert [t["name"] for t in registry.list_tools()] == ["a", "b", "c"]
        listed = registry.list_tools(category="x")
        assert [t["name"] for t in listed] == ["a", "c"]
        assert set(listed[0]) == {"name", "description", "inputSchema"}
        assert registry.get_tools_by_category() == {"x": ["a", "c"], "y": ["b"]}

    def test_version_from_metadata(self, make_tool):
        """Test registration version defaults."""
        registry = ToolRegistry()
        registry.register(make_tool("a", metadata=ToolMetadata(version="2.1.0")))
        registry.register(make_tool("b"), version="9.9.9")
        assert registry.get_registration("a").version == "2.1.0"
        assert registry.get_registration("b").version == "9.9.9"

    def test_params_model_accepted(self, make_tool):
        """Test that a pydantic params model passes validation."""

        class Params(BaseModel):
            message: str = "hi"

        registry = ToolRegistry()
        registry.register(make_tool(params_model=Params))
        assert registry.get("echo").params_model is Params

    def test_stats_export_clear(self, make_tool):
        """Test stats, export and clear."""
        registry = ToolRegistry()
        registry.register(make_tool("a"), category="x")
        registry.register(make_tool("b"), category="x")
        registry.disable("b")

        stats = registry.get_stats()
        assert stats["total_tools"] == 2
        assert stats["enabled_tools"] == 1
        assert stats["disabled_tools"] == 1
        assert stats["tools_by_category"] == {"x": 2}

        exported = registry.export()
        assert exported["config"]["max_tools"] == 1000

        registry.clear()
        assert len(registry) == 0
        assert registry.get_categories() == []
