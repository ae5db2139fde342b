"""
SOAR playbook graph walker.

Walks a playbook's step graph depth-first from its start nodes: evaluates each
step's condition, runs its handler, and follows the onSuccess / onFailure edge
list selected by the handler result.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .errors import EmptyPlaybookError, NoStartingStepsError
from .execution_log import ExecutionLogger
from .handlers import HandlerContext, StepHandlers
from .models import CONTROL_START_TYPES, Playbook, PlaybookStep, RevisitPolicy

logger = logging.getLogger(__name__)

StepPath = Tuple[str, ...]


class PlaybookGraphWalker:
    """
    Executes one playbook run over a shared execution context.

    The walker:
    1. Selects start nodes (steps no edge points to, plus control steps)
    2. Executes each start node in order, recursing along its edges
    3. Returns the logical AND of the start nodes' own results

    Re-entering a step that has already run is governed by `revisit_policy`
    (see RevisitPolicy).
    """

    def __init__(
        self,
        playbook: Playbook,
        handlers: StepHandlers,
        context: ExecutionContext,
        log: ExecutionLogger,
        execution_id: int,
        revisit_policy: RevisitPolicy = RevisitPolicy.PER_PATH,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        """
        Initialize the walker.

        Args:
            playbook: Playbook to execute
            handlers: Step handlers
            context: Execution context (pre-seeded with the trigger, if any)
            log: Execution logger of this run
            execution_id: ID of the execution record
            revisit_policy: What to do when a step is reached again
            evaluator: Condition evaluator. If None, uses the default.
        """
        self.playbook = playbook
        self.handlers = handlers
        self.context = context
        self.log = log
        self.execution_id = execution_id
        self.revisit_policy = RevisitPolicy(revisit_policy)
        self.evaluator = evaluator or ConditionEvaluator()

        # step id -> handler result (None while the step is still running)
        self._claimed: Dict[str, Optional[bool]] = {}

    def find_starting_steps(self) -> List[PlaybookStep]:
        """
        Steps that no onSuccess / onFailure edge references, plus every
        condition / trigger step.
        """
        referenced = self.playbook.referenced_step_ids()
        return [
            step
            for step in self.playbook.steps
            if step.id not in referenced or step.type.upper() in CONTROL_START_TYPES
        ]

    async def execute(self) -> bool:
        """
        Execute the playbook.

        Returns:
            True if every start node succeeded

        Raises:
            EmptyPlaybookError: If the playbook has no steps
            NoStartingStepsError: If no start node can be selected
        """
        if not self.playbook.steps:
            raise EmptyPlaybookError()

        start_steps = self.find_starting_steps()
        if not start_steps:
            raise NoStartingStepsError()

        success = True
        for step in start_steps:
            result = await self.execute_step(step)
            success = success and result
        return success

    async def execute_step(
        self,
        step: PlaybookStep,
        context: Optional[ExecutionContext] = None,
        path: StepPath = (),
    ) -> bool:
        """
        Execute one step and then the steps on its selected edge list.

        Args:
            step: Step to execute
            context: Context to run against. Defaults to the run's context;
                parallel branches pass their own fork.
            path: IDs of the steps on the way here (ancestor chain)

        Returns:
            The step's own result: the handler result, or True when the step
            is skipped because its condition does not hold
        """
        context = context if context is not None else self.context

        if self.revisit_policy == RevisitPolicy.PER_PATH and step.id in path:
            self.log.warning(
                f"Step '{step.name}' ({step.id}) is already on the current path - not re-entering"
            )
            return True

        if self.revisit_policy == RevisitPolicy.ONCE_PER_RUN:
            if step.id in self._claimed:
                self.log.debug(f"Step '{step.name}' ({step.id}) already executed in this run")
                previous = self._claimed[step.id]
                return True if previous is None else previous
            self._claimed[step.id] = None

        here = path + (step.id,)
        try:
            self.log.info(f"Executing step: {step.name} ({step.type})")

            if step.condition is not None and not self.evaluator.evaluate(
                step.condition, context.data
            ):
                self.log.info(f"Condition not met for step: {step.name} - skipping")
                result = True
            else:
                result = await self.handlers.handle(step, self._handler_context(context, here))

            if self.revisit_policy == RevisitPolicy.ONCE_PER_RUN:
                self._claimed[step.id] = result

            await self._follow_edges(step, result, context, here)
            return result
        except Exception as e:
            self.log.error(f"Error executing step {step.name}: {e}")
            if self.revisit_policy == RevisitPolicy.ONCE_PER_RUN:
                self._claimed[step.id] = False
            return False

    async def _follow_edges(
        self, step: PlaybookStep, result: bool, context: ExecutionContext, path: StepPath
    ) -> None:
        for next_id in step.next_step_ids(result):
            next_step = self.playbook.get_step(next_id)
            if next_step is None:
                self.log.warning(f"Next step not found: {next_id}")
                continue
            await self.execute_step(next_step, context, path)

    def _handler_context(self, context: ExecutionContext, path: StepPath) -> HandlerContext:
        async def fan_out(steps: List[PlaybookStep], parent: ExecutionContext) -> List[bool]:
            return await self._fan_out(steps, parent, path)

        return HandlerContext(
            execution_id=self.execution_id,
            playbook=self.playbook,
            context=context,
            log=self.log,
            fan_out=fan_out,
        )

    async def _fan_out(
        self, steps: List[PlaybookStep], parent: ExecutionContext, path: StepPath
    ) -> List[bool]:
        """
        Run sub-steps concurrently, each against its own fork of the parent
        context, then merge the forks back in listed order.
        """
        branches = [parent.fork() for _ in steps]
        results = await asyncio.gather(
            *(self.execute_step(s, branch, path) for s, branch in zip(steps, branches)),
            return_exceptions=True,
        )

        outcomes = []
        for step, branch, result in zip(steps, branches, results):
            parent.merge(branch)
            if isinstance(result, BaseException):
                self.log.error(f"Error executing step {step.name}: {result}")
                outcomes.append(False)
            else:
                outcomes.append(result)
        return outcomes
