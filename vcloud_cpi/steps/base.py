"""
Base class for transaction steps.

A step performs one remote mutation through the client and records in the
shared state bag whatever its rollback needs to undo it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """
    Outcome of one Step.run() call.

    Attributes:
        step: Step name
        ok: True when perform() returned normally
        value: perform() return value
        error: Exception raised by perform(), if any
    """

    step: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


class Step:
    """
    One remote mutation plus its compensating action.

    Subclasses implement perform() and, when the mutation can be undone,
    rollback(). rollback() must no-op when its state entry is absent.

    Attributes:
        STATE_KEY: Prefix of this step's entry in the state bag
    """

    STATE_KEY: str = "step"

    def __init__(self, state: Dict[str, Any], client):
        self.state = state
        self.client = client

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def state_key(self) -> str:
        """State bag key owned by this step instance only."""
        return f"{self.STATE_KEY}:{id(self):x}"

    def perform(self, *args, **kwargs) -> Any:
        raise NotImplementedError(f"{self.name} does not implement perform")

    def rollback(self) -> None:
        """Undo perform(). Default: nothing to undo."""

    def cleanup(self) -> None:
        """Release local resources once the transaction ends."""

    def run(self, *args, **kwargs) -> StepResult:
        """Run perform() and capture its outcome."""
        try:
            value = self.perform(*args, **kwargs)
        except Exception as e:
            logger.debug(f"Step {self.name} failed: {e}")
            return StepResult(step=self.name, ok=False, error=e)
        return StepResult(step=self.name, ok=True, value=value)
