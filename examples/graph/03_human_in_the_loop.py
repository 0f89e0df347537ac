"""
Human-in-the-Loop Example

This example demonstrates:
1. Pausing a node with interrupt() until a person answers
2. Resuming the thread with Command(resume=...)
3. A static breakpoint (interrupt_before) for a final sign-off
4. Inspecting the suspended thread with get_state

Answers are scripted so the example runs unattended; pass --interactive
to type them yourself.
"""

import asyncio
import sys
from typing import Annotated, List, TypedDict

from stepgraph import (
    END,
    START,
    Command,
    InMemoryCheckpointStore,
    StateGraph,
    append,
    interrupt,
)
from stepgraph.core.graph.constants import INTERRUPT_KEY
from stepgraph.core.logging import Colors, LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)


class Expense(TypedDict):
    description: str
    amount: float
    approved: bool
    comments: Annotated[List[str], append]


def review(state: Expense) -> dict:
    """Ask a reviewer when the amount needs approval."""
    if state["amount"] < 100:
        return {"approved": True, "comments": ["auto-approved"]}

    decision = interrupt({
        "question": f"Approve '{state['description']}' for ${state['amount']:.2f}? (yes/no)",
    })
    note = interrupt({"question": "Any comment for the submitter?"})
    return {
        "approved": str(decision).strip().lower().startswith("y"),
        "comments": [f"reviewer: {note}"],
    }


def pay(state: Expense) -> dict:
    return {"comments": [f"paid ${state['amount']:.2f}"]}


def reject(state: Expense) -> dict:
    return {"comments": ["rejected"]}


def build_graph(checkpointer):
    graph = StateGraph(Expense)
    graph.add_node("review", review)
    graph.add_node("pay", pay)
    graph.add_node("reject", reject)

    graph.add_edge(START, "review")
    graph.add_conditional_edges("review", lambda s: "pay" if s["approved"] else "reject", ["pay", "reject"])
    graph.add_edge("pay", END)
    graph.add_edge("reject", END)
    return graph.compile(checkpointer=checkpointer, interrupt_before=["pay"], name="expenses")


def ask(question: str, scripted: List[str], interactive: bool) -> str:
    if interactive:
        return input(f"{question} ")
    answer = scripted.pop(0)
    print(f"{question} {Colors.DIM}{answer}{Colors.RESET}")
    return answer


async def main():
    configure_logging(default_level=LogLevel.INFO)
    interactive = "--interactive" in sys.argv
    app = build_graph(InMemoryCheckpointStore())
    config = {"configurable": {"thread_id": "expense-42"}}
    scripted = ["yes", "Receipt attached, thanks."]

    result = await app.ainvoke(
        {"description": "Conference ticket", "amount": 450.0, "comments": []}, config
    )
    while INTERRUPT_KEY in result:
        pending = result[INTERRUPT_KEY][0]
        answer = ask(pending.value["question"], scripted, interactive)
        result = await app.ainvoke(Command(resume=answer), config)

    snapshot = await app.aget_state(config)
    print(f"\n{Colors.WARNING}Paused before:{Colors.RESET} {snapshot.next} (status={snapshot.status.value})")

    if snapshot.next == ("pay",):
        print("Finance signs off; continuing the thread.")
        result = await app.ainvoke(None, config)

    print(f"\n{Colors.SUCCESS}Approved:{Colors.RESET} {result['approved']}")
    for comment in result["comments"]:
        print(f"  - {comment}")


if __name__ == "__main__":
    asyncio.run(main())
