from stepforce.infrastructure.tools.base import ApprovalRiskLevel, Tool
from stepforce.infrastructure.tools.builtin import builtin_tools
from stepforce.infrastructure.tools.registry import ToolRegistry

__all__ = ["ApprovalRiskLevel", "Tool", "ToolRegistry", "builtin_tools"]
