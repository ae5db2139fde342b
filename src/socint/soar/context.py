"""
Execution context: the namespaced result accumulator of one playbook run.
"""

import copy
from typing import Any, Dict, Optional

# Namespaces written by step handlers
TRIGGER = "trigger"
STEP_RESULTS = "steps"


class ExecutionContext:
    """
    Mutable mapping of namespaced keys to handler results.

    Handlers write through `record()`, which stores the result under its
    family namespace (e.g. `edrActions.isolateHost`) and under the step's own
    slot in `steps.<step id>`. The context only grows during a run. A step
    slot is write-once: when a step runs again (diamond convergence or the
    `always` revisit policy) its family key is updated but `steps.<step id>`
    keeps the first result.

    Parallel branches never share a context: `fork()` hands each branch a
    private copy, and `merge()` folds a finished branch's writes back into
    its parent after the fan-in barrier.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = data if data is not None else {}
        self._writes: Dict[str, Dict[str, Any]] = {}

    @property
    def data(self) -> Dict[str, Any]:
        """Live view used for condition evaluation."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def seed_trigger(self, trigger_type: str, entity: Any) -> None:
        """Store the triggering alert or incident under `trigger`."""
        if hasattr(entity, "model_dump"):
            entity = entity.model_dump(mode="json", by_alias=True)
        self._data[TRIGGER] = {"type": trigger_type, "entity": entity}

    def record(
        self,
        namespace: str,
        key: str,
        result: Dict[str, Any],
        step_id: Optional[str] = None,
    ) -> None:
        """
        Store a handler result.

        Args:
            namespace: Family namespace, e.g. "firewallActions"
            key: Action key inside the namespace, e.g. "blockIp"
            result: Result object (inputs, response payload, timestamp)
            step_id: If given, the result is also stored in the step's slot
        """
        self._set(namespace, key, result)
        if step_id is not None:
            self._set(STEP_RESULTS, step_id, result)

    def _set(self, namespace: str, key: str, value: Any) -> None:
        slots = self._data.setdefault(namespace, {})
        if namespace == STEP_RESULTS and key in slots:
            return
        slots[key] = value
        self._writes.setdefault(namespace, {})[key] = value

    def fork(self) -> "ExecutionContext":
        """Private copy for one concurrent branch."""
        return ExecutionContext(copy.deepcopy(self._data))

    def merge(self, branch: "ExecutionContext") -> None:
        """Apply everything a finished branch recorded."""
        for namespace, values in branch._writes.items():
            for key, value in values.items():
                self._set(namespace, key, value)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy for persisting with the execution record."""
        return copy.deepcopy(self._data)
