"""Superstep scheduler.

``StepEngine`` drives one run of a compiled graph on one thread:

1. load the thread's checkpoint (latest, or the one named in the config)
2. turn the run input into a frontier of pending tasks
3. per superstep: run the frontier concurrently on isolated state copies,
   merge every update through the reducers in one commit, resolve the next
   frontier from commands and edges, write a checkpoint
4. stop when the frontier is empty, a node interrupts, a breakpoint is
   hit, or the step ceiling is reached

A failed superstep commits nothing; the last checkpoint stays resumable.
"""

import asyncio
import copy
import uuid
from contextlib import nullcontext
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import (
    GraphError,
    GraphInterrupt,
    GraphValidationError,
    NodeExecutionError,
    ParentCommand,
    StepLimitExceeded,
)
from stepgraph.core.graph.constants import END, INTERRUPT_KEY, START
from stepgraph.core.graph.context import TaskContext, bind_task_context, get_task_context
from stepgraph.core.graph.state import State
from stepgraph.core.graph.types import (
    Command,
    Goto,
    Interrupt,
    PendingTask,
    RunStatus,
    Send,
    StreamMode,
    TaskWrite,
)
from stepgraph.core.logging import LogComponent, get_logger, log_state

if TYPE_CHECKING:
    from stepgraph.core.checkpoint.base import Checkpoint, CheckpointStore
    from stepgraph.core.graph.compiled import CompiledGraph

logger = get_logger(LogComponent.ENGINE)

Emit = Callable[[StreamMode, Any], None]


def _no_emit(mode: StreamMode, chunk: Any) -> None:
    return None


def new_task_id() -> str:
    return uuid.uuid4().hex


class StepEngine:
    """Runs a compiled graph superstep by superstep.

    Attributes:
        graph: The compiled graph being executed
        config: Run settings (thread, checkpoint, limits)
        checkpointer: Store used to load and persist checkpoints, if any
        state: Committed state of the run
        tasks: Frontier of the next superstep
        status: Current RunStatus
    """

    def __init__(
        self,
        graph: "CompiledGraph",
        config: RunConfig,
        checkpointer: Optional["CheckpointStore"] = None,
        emit: Optional[Emit] = None,
        writer: Optional[Callable[[Any], None]] = None,
        modes: Sequence[StreamMode] = (),
    ):
        self.graph = graph
        self.config = config
        self.checkpointer = checkpointer
        self.modes = frozenset(modes)
        self._emit = emit or _no_emit
        self._writer = writer
        self.nested = get_task_context() is not None

        self.state = State(graph.schema)
        self.checkpoint: Optional["Checkpoint"] = None
        self.tasks: List[PendingTask] = []
        self.pending_writes: List[TaskWrite] = []
        self.interrupts: List[Interrupt] = []
        self.step = -1
        self.status = RunStatus.PENDING

    @property
    def thread_id(self) -> Optional[str]:
        return self.config.thread_id

    def emit(self, mode: StreamMode, chunk: Any) -> None:
        if mode in self.modes:
            self._emit(mode, chunk)

    def _debug(self, kind: str, step: int, payload: Dict[str, Any]) -> None:
        if StreamMode.DEBUG in self.modes:
            self._emit(StreamMode.DEBUG, {"type": kind, "step": step, "payload": payload})

    async def run(self, input: Any) -> RunStatus:
        """Execute the run for ``input`` and return the final status.

        Args:
            input: A state mapping (new run), ``None`` (continue the pending
                tasks of the checkpoint) or ``Command(resume=...)``

        Raises:
            GraphError: Any engine error, with run context attached
        """
        if self.checkpointer is not None and not self.thread_id:
            raise GraphValidationError(
                "A thread_id is required when the graph has a checkpointer; "
                "pass config={'configurable': {'thread_id': ...}}"
            )
        if self.checkpointer is None:
            return await self._run(input)
        async with self.checkpointer.thread_lock(self.thread_id):
            return await self._run(input)

    async def _run(self, input: Any) -> RunStatus:
        try:
            await self._load()
            if isinstance(input, Command):
                await self._prepare_resume(input)
            elif input is None:
                self._prepare_continue()
            else:
                await self._prepare_input(input)
            await self._loop()
        except GraphError as exc:
            exc.with_context(thread_id=self.thread_id, step=self.step + 1)
            self.status = RunStatus.FAILED
            logger.error(f"Run failed on graph '{self.graph.name}': {exc}")
            raise
        return self.status

    async def _load(self) -> None:
        if self.checkpointer is None:
            if self.config.checkpoint_id is not None:
                raise GraphValidationError("checkpoint_id given but the graph has no checkpointer")
            return

        if self.config.checkpoint_id is not None:
            checkpoint = await self.checkpointer.load(self.thread_id, self.config.checkpoint_id)
        else:
            checkpoint = await self.checkpointer.latest(self.thread_id)
        if checkpoint is None:
            return

        self.checkpoint = checkpoint
        self.state = State.restore(self.graph.schema, checkpoint.values)
        self.step = checkpoint.step
        self.tasks = list(checkpoint.tasks)
        self.pending_writes = list(checkpoint.pending_writes)
        self.interrupts = list(checkpoint.interrupts)
        self.status = checkpoint.status
        logger.debug(
            f"Loaded checkpoint {checkpoint.checkpoint_id} of thread {self.thread_id} "
            f"(step={checkpoint.step}, next={list(checkpoint.next)})"
        )

    async def _prepare_input(self, input: Any) -> None:
        if self.tasks:
            logger.warning(
                f"New input on thread {self.thread_id} discards pending tasks {[t.node for t in self.tasks]}"
            )
        self.state = self.state.apply([(START, input)])
        self.pending_writes = []
        self.interrupts = []
        self.step = self.step + 1 if self.checkpoint is not None else -1

        targets = await self._resolve(START, Command())
        self.tasks = self._schedule(START, targets)
        self.status = RunStatus.RUNNING
        self.emit(StreamMode.VALUES, self.state.dump())
        await self._commit_checkpoint(
            "input", {START: self.graph.schema.coerce_update(input, START)}, executed=()
        )

    def _prepare_continue(self) -> None:
        if self.checkpoint is None:
            raise GraphValidationError(
                "Nothing to continue: no checkpoint found; pass an input mapping to start a run"
            )
        if self.interrupts:
            raise GraphValidationError(
                "Thread is waiting on interrupts; resume it with Command(resume=...)"
            )
        logger.info(f"Continuing thread {self.thread_id} from checkpoint {self.checkpoint.checkpoint_id}")
        self.status = RunStatus.RUNNING
        self.emit(StreamMode.VALUES, self.state.dump())

    async def _prepare_resume(self, command: Command) -> None:
        if not command.has_resume:
            raise GraphValidationError("Only Command(resume=...) is accepted as run input")
        if self.checkpoint is None or not self.interrupts:
            raise GraphValidationError("Nothing to resume: the thread has no pending interrupts")

        value = command.resume
        pending_ids = {i.id for i in self.interrupts}
        targeted = isinstance(value, Mapping) and bool(value) and set(value) <= pending_ids

        resume_for: Dict[str, Any] = {}
        for intr in self.interrupts:
            if not targeted:
                resume_for.setdefault(intr.task_id, value)
            elif intr.id in value:
                resume_for.setdefault(intr.task_id, value[intr.id])

        self.tasks = [
            task.model_copy(update={"resume": [*task.resume, resume_for[task.id]]})
            if task.id in resume_for else task
            for task in self.tasks
        ]
        self.interrupts = []
        self.status = RunStatus.RUNNING
        logger.info(f"Resuming thread {self.thread_id}: {sorted(resume_for)}")
        self.emit(StreamMode.VALUES, self.state.dump())

    async def _loop(self) -> None:
        executed = 0
        while self.tasks and self.status is RunStatus.RUNNING:
            if executed >= self.config.recursion_limit:
                raise StepLimitExceeded(
                    self.config.recursion_limit,
                    thread_id=self.thread_id,
                    step=self.step + 1,
                )
            await self._superstep(self.step + 1)
            executed += 1

        if not self.tasks and self.status is RunStatus.RUNNING:
            self.status = RunStatus.COMPLETED
        logger.info(
            f"Graph '{self.graph.name}' stopped after {executed} superstep(s): {self.status.value}"
        )

    async def _superstep(self, step: int) -> None:
        done = {write.task_id: write for write in self.pending_writes}
        to_run = [task for task in self.tasks if task.id not in done]
        logger.step(f"Superstep {step}: {[task.node for task in to_run]}")

        limit = self.config.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit else None
        results = await asyncio.gather(
            *(self._run_task(task, step, semaphore) for task in to_run),
            return_exceptions=True,
        )

        outcomes: Dict[str, Command] = {}
        interrupts: List[Interrupt] = []
        for task, result in zip(to_run, results):
            if isinstance(result, GraphInterrupt):
                interrupts.extend(result.interrupts)
                self._debug("task_result", step, {"id": task.id, "name": task.node, "interrupts": result.interrupts})
            elif isinstance(result, BaseException):
                self._debug("task_result", step, {"id": task.id, "name": task.node, "error": repr(result)})
                raise result
            else:
                outcomes[task.id] = result
                self._debug("task_result", step, {"id": task.id, "name": task.node, "result": result})

        for task in to_run:
            command = outcomes.get(task.id)
            if command is not None and command.graph == Command.PARENT:
                if not self.nested:
                    raise GraphValidationError(
                        "Command(graph=Command.PARENT) returned outside of a subgraph",
                        node=task.node,
                        step=step,
                    )
                logger.debug(f"Node {task.node} hands a command to the parent graph")
                raise ParentCommand(command)

        if interrupts:
            await self._suspend(step, done, outcomes, interrupts)
            return

        ordered: List[Tuple[PendingTask, Command]] = []
        for task in self.tasks:
            if task.id in done:
                write = done[task.id]
                ordered.append((task, Command(update=write.update, goto=write.goto)))
            else:
                ordered.append((task, outcomes[task.id]))

        self.state = self.state.apply([(task.node, command.update) for task, command in ordered])
        if self.graph.logging_config.show_state_values:
            log_state(
                logger,
                self.state.to_values(),
                prefix=f"[step {step}] ",
                level=self.graph.logging_config.level,
            )

        targets: List[Tuple[str, Goto]] = []
        for task, command in ordered:
            for target in await self._resolve(task.node, command):
                targets.append((task.node, target))

        self.step = step
        self.tasks = self._schedule_all(targets)
        self.pending_writes = []

        writes = {}
        for task, command in ordered:
            update = self.graph.schema.coerce_update(command.update, task.node)
            writes[task.node] = update
            self.emit(StreamMode.UPDATES, {task.node: update})
        self.emit(StreamMode.VALUES, self.state.dump())

        await self._commit_checkpoint("loop", writes, executed=[task.node for task, _ in ordered])

    async def _run_task(
        self,
        task: PendingTask,
        step: int,
        semaphore: Optional[asyncio.Semaphore],
    ) -> Command:
        node = self.graph.nodes[task.node]
        context = TaskContext(
            task_id=task.id,
            node=task.node,
            config=self.config,
            resume=task.resume,
            writer=self._writer,
            checkpointer=self.checkpointer,
        )
        token = bind_task_context(context)
        try:
            async with semaphore or nullcontext():
                payload = copy.deepcopy(task.payload) if task.is_send else self.state.view()
                self._debug("task", step, {"id": task.id, "name": task.node, "input": payload})
                return await node.invoke(payload, self.config)
        except GraphInterrupt:
            raise
        except ParentCommand as exc:
            # Applied here as this node's own result
            return exc.command.model_copy(update={"graph": None})
        except GraphError as exc:
            raise exc.with_context(node=task.node, step=step, thread_id=self.thread_id)
        except Exception as exc:
            logger.error(f"Node {task.node} raised {type(exc).__name__}: {exc}")
            raise NodeExecutionError(
                f"Node '{task.node}' failed: {type(exc).__name__}: {exc}",
                node=task.node,
                step=step,
                thread_id=self.thread_id,
            ) from exc
        finally:
            token.var.reset(token)

    async def _suspend(
        self,
        step: int,
        done: Dict[str, TaskWrite],
        outcomes: Dict[str, Command],
        interrupts: List[Interrupt],
    ) -> None:
        if self.checkpointer is None:
            raise GraphValidationError(
                "interrupt() requires a checkpointer to save the suspended run",
                node=interrupts[0].node,
                step=step,
            )

        writes = list(done.values())
        for task in self.tasks:
            command = outcomes.get(task.id)
            if command is None:
                continue
            writes.append(
                TaskWrite(
                    task_id=task.id,
                    node=task.node,
                    update=self.graph.schema.coerce_update(command.update, task.node),
                    goto=list(command.goto),
                )
            )

        self.pending_writes = writes
        self.interrupts = interrupts
        self.status = RunStatus.SUSPENDED
        await self._save("interrupt", {}, RunStatus.SUSPENDED)
        self.emit(StreamMode.UPDATES, {INTERRUPT_KEY: tuple(interrupts)})
        logger.info(
            f"Thread {self.thread_id} suspended at step {step} on "
            f"{[i.node for i in interrupts]}"
        )

    async def next_tasks(
        self, source: str, state: State, command: Optional[Command] = None
    ) -> List[PendingTask]:
        """Tasks that follow ``source`` once ``state`` is committed.

        Branches of ``source`` are evaluated against ``state``; a ``command``
        with ``goto`` overrides them.
        """
        self.state = state
        targets = await self._resolve(source, command or Command())
        return self._schedule(source, targets)

    async def _resolve(self, source: str, command: Command) -> List[Goto]:
        if command.goto:
            return list(command.goto)
        routing = self.graph.routing
        view = self.state.view() if source in routing.branches else None
        try:
            return await routing.resolve(source, view, self.config)
        except GraphError as exc:
            raise exc.with_context(node=source)
        except Exception as exc:
            raise NodeExecutionError(
                f"Router of '{source}' failed: {type(exc).__name__}: {exc}",
                node=source,
                thread_id=self.thread_id,
            ) from exc

    def _check_destination(self, source: str, name: str) -> None:
        if name not in self.graph.nodes:
            raise GraphValidationError(f"Unknown destination '{name}' from '{source}'", node=source)

    def _schedule(self, source: str, targets: Sequence[Goto]) -> List[PendingTask]:
        return self._schedule_all([(source, target) for target in targets])

    def _schedule_all(self, targets: Sequence[Tuple[str, Goto]]) -> List[PendingTask]:
        """Next frontier: plain destinations once each, in registration order,
        followed by one task per Send in emission order."""
        plain: List[str] = []
        sends: List[PendingTask] = []
        for source, target in targets:
            if isinstance(target, Send):
                self._check_destination(source, target.node)
                sends.append(
                    PendingTask(id=new_task_id(), node=target.node, is_send=True, payload=target.arg)
                )
            elif target == END:
                continue
            else:
                self._check_destination(source, target)
                if target not in plain:
                    plain.append(target)

        order = self.graph.node_order
        plain.sort(key=order.index)
        return [PendingTask(id=new_task_id(), node=name) for name in plain] + sends

    async def _commit_checkpoint(self, source: str, writes: Dict[str, Any], executed: Sequence[str]) -> None:
        status = RunStatus.RUNNING if self.tasks else RunStatus.COMPLETED
        if self.tasks and self._hits_breakpoint(executed):
            status = RunStatus.SUSPENDED
            logger.info(f"Breakpoint hit on thread {self.thread_id} before {[t.node for t in self.tasks]}")
        self.status = status
        await self._save(source, writes, status)

    def _hits_breakpoint(self, executed: Sequence[str]) -> bool:
        if any(name in self.graph.interrupt_after for name in executed):
            return True
        return any(task.node in self.graph.interrupt_before for task in self.tasks)

    async def _save(self, source: str, writes: Dict[str, Any], status: RunStatus) -> None:
        if self.checkpointer is None:
            return
        from stepgraph.core.checkpoint.base import Checkpoint

        checkpoint = Checkpoint(
            thread_id=self.thread_id,
            parent_id=self.checkpoint.checkpoint_id if self.checkpoint else None,
            step=self.step,
            status=status,
            values=self.state.to_values(),
            tasks=self.tasks,
            pending_writes=self.pending_writes,
            interrupts=self.interrupts,
            metadata={
                "source": source,
                "writes": writes,
                "tags": list(self.config.tags),
                **self.config.metadata,
            },
        )
        self.checkpoint = await self.checkpointer.save(self.thread_id, checkpoint)
        self._debug(
            "checkpoint",
            self.step,
            {
                "checkpoint_id": checkpoint.checkpoint_id,
                "parent_id": checkpoint.parent_id,
                "next": list(checkpoint.next),
                "status": status.value,
            },
        )
