"""
Unit Tests for ToolRegistry and the Tool base class

Tests dispatch, schema validation, free-text mapping and approval metadata.
"""

from typing import Any, Dict

import pytest

from stepforce.core.domain.errors import ToolNotFoundError, ToolValidationError
from stepforce.infrastructure.tools.base import ApprovalRiskLevel, Tool
from stepforce.infrastructure.tools.builtin import EchoTool, builtin_tools
from stepforce.infrastructure.tools.registry import ToolRegistry


class FetchTool(Tool):
    """Two required parameters of different types."""

    @property
    def name(self) -> str:
        return "fetch"

    @property
    def description(self) -> str:
        return "Fetch a page"

    async def execute(self, retries: int, url: str, verbose: bool = False) -> Dict[str, Any]:
        return {"success": True, "url": url, "retries": retries}


class WriteTool(Tool):
    """Tool that needs approval."""

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write a file"

    @property
    def requires_approval(self) -> bool:
        return True

    async def execute(self, path: str, content: str = "") -> Dict[str, Any]:
        return {"success": True, "path": path}


@pytest.fixture
def registry():
    return ToolRegistry([*builtin_tools(), FetchTool(), WriteTool()])


class TestToolBase:
    """Tests for schema generation and approval metadata."""

    def test_schema_from_signature(self):
        """Test that parameter types and required names are derived."""
        schema = FetchTool().parameters_schema
        assert schema["properties"]["retries"]["type"] == "integer"
        assert schema["properties"]["verbose"]["type"] == "boolean"
        assert schema["required"] == ["retries", "url"]

    def test_risk_levels(self):
        """Test the default risk derived from the approval flag."""
        assert FetchTool().approval_risk_level == ApprovalRiskLevel.LOW
        assert WriteTool().approval_risk_level == ApprovalRiskLevel.MEDIUM

    def test_validate_params(self):
        """Test the base-class required parameter check."""
        assert FetchTool().validate_params(url="u") == (False, "Missing required parameter: retries")
        assert FetchTool().validate_params(url="u", retries=1) == (True, None)

    def test_approval_preview_truncates_long_values(self):
        """Test the preview shown before a sensitive call."""
        preview = WriteTool().get_approval_preview(path="/tmp/a", content="x" * 500)
        assert "Tool: write_file" in preview
        assert "path: /tmp/a" in preview
        assert preview.endswith("...")


class TestRegistry:
    """Tests for lookup and dispatch."""

    def test_unknown_tool(self, registry):
        """Test that lookups list the available tools."""
        with pytest.raises(ToolNotFoundError) as exc_info:
            registry.get("nope")
        assert "echo" in str(exc_info.value)

    def test_names_and_approval(self, registry):
        """Test registry metadata accessors."""
        assert registry.names == sorted(["echo", "sleep", "confirmed_echo", "fetch", "write_file"])
        assert registry.requires_approval("write_file")
        assert not registry.requires_approval("echo")
        assert "fetch" in registry

    def test_describe_call(self, registry):
        """Test risk and preview for an approval prompt."""
        risk, preview = registry.describe_call("confirmed_echo", {"m": "hi"})
        assert risk == "high"
        assert "m: hi" in preview

    @pytest.mark.asyncio
    async def test_invoke_passes_arguments(self, registry):
        """Test successful dispatch."""
        result = await registry.invoke("fetch", {"url": "https://x", "retries": 2})
        assert result == {"success": True, "url": "https://x", "retries": 2}

    @pytest.mark.asyncio
    async def test_invoke_none_args(self, registry):
        """Test that None arguments mean no arguments."""
        assert await registry.invoke("echo", None) == {"success": True}

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, registry):
        """Test the validation message and suggestion."""
        with pytest.raises(ToolValidationError) as exc_info:
            await registry.invoke("fetch", {"url": "https://x"})
        assert "retries" in str(exc_info.value)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_unknown_parameter(self, registry):
        """Test rejection of parameters the tool does not take."""
        with pytest.raises(ToolValidationError):
            await registry.invoke("write_file", {"path": "a", "mode": "w"})

    @pytest.mark.asyncio
    async def test_kwargs_tool_accepts_anything(self):
        """Test that **kwargs tools skip the unknown-parameter check."""
        registry = ToolRegistry([EchoTool()])
        assert await registry.invoke("echo", {"anything": 1}) == {"success": True, "anything": 1}

    @pytest.mark.asyncio
    async def test_non_object_arguments(self, registry):
        """Test that arrays are not valid argument objects."""
        with pytest.raises(ToolValidationError):
            await registry.invoke("fetch", [1, 2])


class TestMapTextInput:
    """Tests for free-text argument mapping."""

    def test_key_value_pairs(self, registry):
        """Test 'key: value' text with number coercion."""
        assert registry.map_text_input("fetch", "url: https, retries: 3") == {"url": "https", "retries": 3}

    def test_single_required_parameter(self, registry):
        """Test mapping onto the only required parameter."""
        assert registry.map_text_input("write_file", "notes.txt") == {"path": "notes.txt"}

    def test_first_string_required_parameter(self, registry):
        """Test several required parameters, picking the first string one."""
        assert registry.map_text_input("fetch", "https://example.com") == {"url": "https://example.com"}

    def test_no_schema_falls_back_to_input(self, registry):
        """Test tools without declared parameters."""
        assert registry.map_text_input("echo", "hello") == {"input": "hello"}
