"""Terminal approval prompt."""

import asyncio
import queue
import threading
from collections.abc import Callable

import structlog
from rich.prompt import Confirm

from stepforce.api.cli.output_formatter import OutputFormatter, console
from stepforce.core.domain.approval import ApprovalGate
from stepforce.core.domain.models import ToolCall

logger = structlog.get_logger()


def confirm_on_console() -> bool:
    return Confirm.ask("Approve this tool call?", console=console, default=False)


class ConsoleApprovalHandler:
    """Asks for confirmation on the terminal.

    One daemon thread owns stdin and serves requests in order, so a prompt
    never blocks the event loop and never holds up interpreter exit. The
    handler returns without a decision; the answer resolves the gate from
    the loop thread. An answer for a gate that was already decided (timeout,
    cancellation) is discarded and the next request gets its own prompt.
    """

    def __init__(self, prompt: Callable[[], bool] | None = None):
        self.prompt = prompt or confirm_on_console
        self._requests: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self.logger = logger.bind(component="console_approval")

    async def on_approval_requested(self, tool_call: ToolCall, gate: ApprovalGate) -> None:
        self._requests.put((asyncio.get_running_loop(), gate))
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._serve, name="stepforce-approval", daemon=True)
            self._thread.start()
        return None

    def _serve(self) -> None:
        while True:
            loop, gate = self._requests.get()
            if gate.is_resolved:
                continue

            OutputFormatter.format_approval_request(gate.tool_call)
            try:
                answer = self.prompt()
            except EOFError:
                answer = None

            try:
                loop.call_soon_threadsafe(self._apply, gate, answer)
            except RuntimeError:
                # Loop already closed: the run is over.
                self.logger.debug("approval_answer_dropped", call_id=gate.tool_call.call_id)

    def _apply(self, gate: ApprovalGate, answer: bool | None) -> None:
        if gate.is_resolved:
            self.logger.info(
                "approval_answer_ignored",
                call_id=gate.tool_call.call_id,
                state=gate.state.value,
            )
            console.print(
                f"[dim]{gate.tool_call.step_id} was already {gate.state.value}; answer ignored[/dim]"
            )
            return

        if answer is None:
            gate.cancel("no input available")
        elif answer:
            gate.approve("approved on console")
        else:
            gate.reject("rejected on console")
