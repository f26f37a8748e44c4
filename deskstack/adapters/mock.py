"""
Mock adapter — universal test double for all adapter operations.

Used in mock mode and in tests to simulate collaborators without
touching the system. Configurable to return success, failure, or
custom responses per action id, or per operation.
"""

from __future__ import annotations

from deskstack.adapters.base import Adapter, ExecutionContext
from deskstack.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything. Can be configured
    with custom responses per action ID or per operation name.
    """

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._op_responses: dict[str, Receipt] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        """Number of times execute has been called."""
        return len(self._call_log)

    def calls(self, operation: str) -> list[ExecutionContext]:
        """Contexts received for one operation, in call order."""
        return [c for c in self._call_log if c.action.operation == operation]

    def targets(self, operation: str) -> list[str]:
        return [c.action.target for c in self.calls(operation)]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for a specific action ID."""
        self._responses[action_id] = receipt

    def set_operation_response(self, operation: str, receipt: Receipt) -> None:
        """Set a custom response for every call of one operation."""
        self._op_responses[operation] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure") -> None:
        """Configure a specific action to fail."""
        self._responses[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        # Check for custom response
        action_id = context.action.id
        if action_id in self._responses:
            return self._responses[action_id].model_copy(update={"action_id": action_id})
        if context.action.operation in self._op_responses:
            return self._op_responses[context.action.operation].model_copy(
                update={"action_id": action_id},
            )

        # Default: success
        return Receipt.success(
            adapter=self._name,
            action_id=action_id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._op_responses.clear()
