"""Compiled graph used as a node of another graph.

The subgraph receives the parent channels it declares, runs to completion
on its own thread (derived from the parent thread and task), and returns
the shared channels whose values it changed. With a checkpointer,
interrupts inside the subgraph suspend the parent; resuming the parent
resumes the subgraph where it stopped.

Returned values go through the parent's reducers like any other update,
so a reducer channel receives the subgraph's final value as one write.
"""

from typing import Any, Dict, Tuple

from pydantic import Field

from stepgraph.core.config import RunConfig
from stepgraph.core.errors import GraphInterrupt
from stepgraph.core.graph.constants import INTERRUPT_KEY, NS_SEP
from stepgraph.core.graph.context import get_task_context
from stepgraph.core.graph.nodes.base.node import Node
from stepgraph.core.graph.types import Command, Interrupt
from stepgraph.core.logging import LogComponent, get_logger, log_verbose

logger = get_logger(LogComponent.NODES)


class SubgraphNode(Node):
    """
    Node running a CompiledGraph.

    Attributes:
        graph: The compiled subgraph
        parent_channels: Channels of the graph this node belongs to
    """
    graph: Any = Field(..., description="CompiledGraph executed by this node")
    parent_channels: Tuple[str, ...] = Field(default=())

    @property
    def shared_channels(self) -> Tuple[str, ...]:
        return tuple(name for name in self.graph.schema.channels if name in self.parent_channels)

    def _input(self, state: Any) -> Dict[str, Any]:
        values = {}
        for name in self.shared_channels:
            if isinstance(state, dict):
                if name in state:
                    values[name] = state[name]
            elif hasattr(state, name):
                values[name] = getattr(state, name)
        return values

    def validate(self) -> bool:
        return bool(self.shared_channels)

    async def process(self, state: Any, config: RunConfig) -> Any:
        context = get_task_context()
        if context is None:
            raise RuntimeError(f"Subgraph node {self.id} must run inside a graph")

        checkpointer = context.checkpointer
        sub_config = config.merge(thread_id=None, checkpoint_id=None)
        run_input: Any = self._input(state)

        if checkpointer is not None:
            sub_config = sub_config.merge(
                thread_id=NS_SEP.join([config.thread_id or "", self.id, context.task_id])
            )
            latest = await checkpointer.latest(sub_config.thread_id)
            if latest is not None and latest.interrupts and context.resume:
                log_verbose(logger, f"Resuming subgraph {self.id} on thread {sub_config.thread_id}")
                run_input = Command(resume=context.resume[-1])

        inputs = self._input(state)
        result = await self.graph._ainvoke(run_input, sub_config, checkpointer=checkpointer)

        pending = result.pop(INTERRUPT_KEY, None)
        if pending:
            index = len(context.resume)
            raise GraphInterrupt([
                Interrupt(
                    value=intr.value,
                    id=f"{context.task_id}:{index}" + (f".{i}" if i else ""),
                    node=self.id,
                    task_id=context.task_id,
                )
                for i, intr in enumerate(pending)
            ])

        return {
            name: value
            for name, value in result.items()
            if name in self.parent_channels and (name not in inputs or inputs[name] != value)
        }
