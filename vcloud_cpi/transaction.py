"""
Step runner with compensating rollback.

Runs steps strictly in sequence. When a step fails, every step that had
completed is rolled back in reverse order and the original error is raised
again. Rollback failures are logged one by one and collected in
`rollback_errors`; they never replace the original error.

Usage:
    from vcloud_cpi.transaction import Transaction
    from vcloud_cpi.steps import AddCatalogItem, PowerOn

    # Interactive: later steps can use earlier results
    with Transaction("publish media", client) as txn:
        item = txn.next(AddCatalogItem, "media", media)

    # Fixed plan
    state = Transaction.perform("boot", client, [
        (PowerOn, (vapp,)),
    ])
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from vcloud_cpi.steps.base import Step


class Transaction:
    """
    One execution of an ordered sequence of steps.

    Attributes:
        name: Transaction name used in log messages
        state: Step state bag shared by every step of this execution
        rollback_errors: (step name, exception) for each failed rollback
    """

    def __init__(self, name: str, client, logger: Optional[logging.Logger] = None):
        self.name = name
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.state: Dict[str, Any] = {}
        self.rollback_errors: List[Tuple[str, BaseException]] = []
        self._steps: List[Step] = []
        self._completed: List[Step] = []
        self._rolled_back = False
        self._cleaned_up = False

    @property
    def completed_steps(self) -> List[Step]:
        return list(self._completed)

    def _context(self, step: Optional[Step] = None) -> Dict[str, str]:
        """Log record fields naming this transaction (and step)."""
        context = {"transaction": self.name}
        if step is not None:
            context["step"] = step.name
        return context

    def next(self, step_class: Type[Step], *args, **kwargs) -> Any:
        """
        Run one step.

        Returns:
            The step's perform() result

        Raises:
            Exception: The step's original failure, after rollback
        """
        step = step_class(self.state, self.client)
        self._steps.append(step)
        self.logger.info(f"[{self.name}] Step {step.name}", extra=self._context(step))

        result = step.run(*args, **kwargs)
        if not result.ok:
            self.logger.error(f"[{self.name}] Step {step.name} failed: {result.error}",
                              extra=self._context(step))
            self.rollback()
            self.cleanup()
            raise result.error

        self._completed.append(step)
        return result.value

    def rollback(self) -> None:
        """Roll back completed steps, newest first. Runs at most once."""
        if self._rolled_back:
            return
        self._rolled_back = True

        if not self._completed:
            self.logger.info(f"[{self.name}] No steps to roll back", extra=self._context())
            return

        self.logger.warning(f"[{self.name}] Rolling back {len(self._completed)} steps",
                            extra=self._context())
        for step in reversed(self._completed):
            try:
                self.logger.info(f"[{self.name}] Rollback: {step.name}", extra=self._context(step))
                step.rollback()
            except Exception as e:
                self.logger.error(f"[{self.name}] Rollback of {step.name} failed: {e}",
                                  extra=self._context(step))
                self.rollback_errors.append((step.name, e))

    def cleanup(self) -> None:
        """Run cleanup() on every step that ran. Runs at most once."""
        if self._cleaned_up:
            return
        self._cleaned_up = True

        for step in reversed(self._steps):
            try:
                step.cleanup()
            except Exception as e:
                self.logger.warning(f"[{self.name}] Cleanup of {step.name} failed: {e}",
                                    extra=self._context(step))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.cleanup()
        return False

    @classmethod
    def perform(
        cls,
        name: str,
        client,
        steps: Iterable,
        logger: Optional[logging.Logger] = None,
    ) -> Dict[str, Any]:
        """
        Run a fixed list of steps.

        Args:
            name: Transaction name
            client: VCloudClient shared by the steps
            steps: Entries of step_class, (step_class, args) or
                (step_class, args, kwargs)
            logger: Logger to use

        Returns:
            The state bag after the last step
        """
        with cls(name, client, logger) as txn:
            for entry in steps:
                step_class, args, kwargs = _unpack(entry)
                txn.next(step_class, *args, **kwargs)
        return txn.state


def _unpack(entry) -> Tuple[Type[Step], tuple, dict]:
    if isinstance(entry, type):
        return entry, (), {}
    if len(entry) == 2:
        return entry[0], tuple(entry[1]), {}
    return entry[0], tuple(entry[1]), dict(entry[2])
