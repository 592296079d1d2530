# ============================================
# BASE TOOL INTERFACE
# ============================================

import inspect
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ApprovalRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Tool(ABC):
    """Base class for all tools"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    def requires_approval(self) -> bool:
        """Override to gate this tool behind human confirmation."""
        return False

    @property
    def approval_risk_level(self) -> ApprovalRiskLevel:
        return ApprovalRiskLevel.MEDIUM if self.requires_approval else ApprovalRiskLevel.LOW

    @property
    def parameters_schema(self) -> Dict[str, Any]:
        """Override to provide a custom JSON schema for the parameters"""
        return self._generate_schema_from_signature()

    def _generate_schema_from_signature(self) -> Dict[str, Any]:
        """Auto-generate parameter schema from execute method signature"""
        sig = inspect.signature(self.execute)
        properties = {}
        required = []

        for param_name, param in sig.parameters.items():
            if param_name in ["self", "kwargs"] or param.kind == inspect.Parameter.VAR_KEYWORD:
                continue

            param_type = "string"  # Default
            if param.annotation != inspect.Parameter.empty:
                if param.annotation in (int, "int"):
                    param_type = "integer"
                elif param.annotation in (bool, "bool"):
                    param_type = "boolean"
                elif param.annotation in (float, "float"):
                    param_type = "number"
                elif param.annotation in (Dict, dict, "dict"):
                    param_type = "object"
                elif param.annotation in (List, list, "list"):
                    param_type = "array"

            properties[param_name] = {
                "type": param_type,
                "description": f"Parameter {param_name}",
            }

            if param.default == inspect.Parameter.empty:
                required.append(param_name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    @property
    def accepts_any_params(self) -> bool:
        """True when execute() takes **kwargs, i.e. unknown params are fine."""
        sig = inspect.signature(self.execute)
        return any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values())

    @abstractmethod
    async def execute(self, **kwargs) -> Any:
        pass

    def validate_params(self, **kwargs) -> Tuple[bool, Optional[str]]:
        """Validate parameters before execution"""
        sig = inspect.signature(self.execute)

        for param_name, param in sig.parameters.items():
            if param_name in ["self", "kwargs"] or param.kind == inspect.Parameter.VAR_KEYWORD:
                continue

            if param.default == inspect.Parameter.empty and param_name not in kwargs:
                return False, f"Missing required parameter: {param_name}"

        return True, None

    def get_approval_preview(self, **kwargs) -> str:
        """Human-readable summary shown in the approval prompt."""
        lines = [f"Tool: {self.name}", f"Description: {self.description}", "Parameters:"]
        for key, value in kwargs.items():
            rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
            if len(rendered) > 200:
                rendered = rendered[:200] + "..."
            lines.append(f"  {key}: {rendered}")
        return "\n".join(lines)
