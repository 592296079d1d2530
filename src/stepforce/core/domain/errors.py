"""
Domain Errors

Structured error taxonomy for plan execution. Every error carries a
machine-readable ``kind`` so callers can tell "fix my placeholder" apart from
"this tool is broken" without parsing messages.

Approval rejection and cancellation are absent: they are normal
step outcomes (see ``ApprovalDecision``), never raised to the plan caller.
"""

from enum import Enum
from typing import Any


class StepforceError(Exception):
    """Base class for all plan-execution errors."""

    kind = "stepforce_error"

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for ledger entries and progress updates."""
        return {"kind": self.kind, "message": str(self)}


class LookupFailure(str, Enum):
    """Why a ledger lookup for a step came back empty."""

    NO_ENTRY = "no_entry"
    SKIPPED_WITHOUT_FALLBACK = "skipped_without_fallback"


class StepResultNotFound(StepforceError):
    """No usable ledger entry exists for the referenced step."""

    kind = "step_result_not_found"

    def __init__(
        self,
        step_number: int,
        reason: LookupFailure = LookupFailure.NO_ENTRY,
        placeholder: str | None = None,
    ):
        self.step_number = step_number
        self.reason = reason
        self.placeholder = placeholder
        if reason == LookupFailure.SKIPPED_WITHOUT_FALLBACK:
            message = (
                f"step{step_number} was skipped and no earlier successful step "
                f"is available as a fallback"
            )
        else:
            message = f"No execution result found for step{step_number}"
        if placeholder:
            message = f"{message} (placeholder {placeholder})"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "step_number": self.step_number,
                "reason": self.reason.value,
                "placeholder": self.placeholder,
            }
        )
        return data


class PlaceholderNotFound(StepforceError):
    """The step exists but the requested field (and every alias) is absent."""

    kind = "placeholder_not_found"

    def __init__(
        self,
        placeholder: str,
        step_id: str,
        tool_name: str,
        path: str | None,
        available_fields: list[str],
    ):
        self.placeholder = placeholder
        self.step_id = step_id
        self.tool_name = tool_name
        self.path = path
        self.available_fields = available_fields

        preview = ", ".join(available_fields[:5])
        if len(available_fields) > 5:
            preview += "..."
        super().__init__(
            f'Placeholder {placeholder} not found. Field "{path}" does not exist '
            f"in {step_id} result (tool {tool_name}). Available fields: {preview or '<none>'}"
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "placeholder": self.placeholder,
                "step_id": self.step_id,
                "tool_name": self.tool_name,
                "path": self.path,
                "available_fields": list(self.available_fields),
            }
        )
        return data


class NormalizationError(StepforceError):
    """A step's raw arguments could not be resolved into tool arguments.

    ``path`` is the trail of object keys / array indices leading to the
    failing leaf, outermost first. It grows as the error propagates out of
    nested structures via ``with_parent``.
    """

    kind = "normalization_error"

    def __init__(
        self,
        message: str,
        path: list[str | int] | None = None,
        cause: Exception | None = None,
        tool_name: str | None = None,
    ):
        self.message = message
        self.path: list[str | int] = list(path or [])
        self.cause = cause
        self.tool_name = tool_name
        super().__init__(message)

    @property
    def location(self) -> str:
        """Render the key/index trail as ``a.b[2].c``."""
        rendered = ""
        for part in self.path:
            if isinstance(part, int):
                rendered += f"[{part}]"
            else:
                rendered += f".{part}" if rendered else str(part)
        return rendered

    def with_parent(self, key: str | int) -> "NormalizationError":
        self.path.insert(0, key)
        return self

    def __str__(self) -> str:
        where = self.location
        return f"{self.message} (at {where})" if where else self.message

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "path": list(self.path),
                "location": self.location,
                "tool_name": self.tool_name,
                "cause": self.cause.to_dict()
                if isinstance(self.cause, StepforceError)
                else None,
            }
        )
        return data


class ToolNotFoundError(StepforceError):
    """The plan references a tool the registry does not know."""

    kind = "tool_not_found"

    def __init__(self, tool_name: str, available: list[str] | None = None):
        self.tool_name = tool_name
        self.available = sorted(available or [])
        message = f'Tool "{tool_name}" does not exist'
        if self.available:
            message += f". Available tools: {', '.join(self.available)}"
        super().__init__(message)


class ToolInvocationError(StepforceError):
    """The tool raised or reported failure."""

    kind = "tool_invocation_error"

    def __init__(self, tool_name: str, message: str, retryable: bool = True):
        self.tool_name = tool_name
        self.retryable = retryable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"tool_name": self.tool_name, "retryable": self.retryable})
        return data


class ToolValidationError(ToolInvocationError):
    """Arguments violate the tool's parameter schema. Never retried."""

    kind = "tool_validation_error"

    def __init__(self, tool_name: str, message: str, suggestion: str | None = None):
        self.suggestion = suggestion
        full = f"{message}. {suggestion}" if suggestion else message
        super().__init__(tool_name, full, retryable=False)
