"""
Subgraph and Message Channel Example

This example demonstrates:
1. A message history channel (MessagesState) merged by add_messages
2. A compiled graph used as a node of a parent graph
3. Command(goto=...) routing from inside a node

A rule-based "assistant" stands in for a model call so the example runs
offline. The triage subgraph picks a reply; the parent either answers or
hands the conversation to a human.
"""

import asyncio
from typing import List

from stepgraph import END, START, Command, Message, MessagesState, StateGraph
from stepgraph.core.logging import Colors, LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)

KEYWORDS = {
    "refund": "I have started a refund for your last order.",
    "invoice": "Your invoice is attached to this message.",
}


class SupportState(MessagesState):
    intent: str


def classify(state: SupportState) -> dict:
    text = state["messages"][-1].content.lower()
    intent = next((key for key in KEYWORDS if key in text), "unknown")
    return {"intent": intent}


def draft_reply(state: SupportState) -> Command:
    if state["intent"] == "unknown":
        return Command(goto=END)
    return Command(
        update={"messages": [Message(role="assistant", content=KEYWORDS[state["intent"]])]},
        goto=END,
    )


def build_triage():
    graph = StateGraph(SupportState)
    graph.add_node("classify", classify)
    graph.add_node("draft_reply", draft_reply, destinations=(END,))
    graph.add_edge(START, "classify").add_edge("classify", "draft_reply")
    return graph.compile(name="triage")


def handoff(state: SupportState) -> dict:
    return {"messages": [("assistant", "Let me connect you with a colleague.")]}


def build_graph():
    graph = StateGraph(SupportState)
    graph.add_node("triage", build_triage())
    graph.add_node("handoff", handoff)

    graph.add_edge(START, "triage")
    graph.add_conditional_edges(
        "triage", lambda s: "handoff" if s["intent"] == "unknown" else END, ["handoff", END]
    )
    graph.add_edge("handoff", END)
    return graph.compile(name="support")


async def main():
    configure_logging(default_level=LogLevel.WARNING)
    app = build_graph()
    print(app.get_graph().draw_mermaid())

    for text in ("Can I get a refund?", "My parcel arrived wet."):
        result = await app.ainvoke({"messages": [("user", text)]})
        print(f"{Colors.BOLD}Conversation{Colors.RESET} (intent={result['intent']})")
        messages: List[Message] = result["messages"]
        for message in messages:
            print(f"  {message.role:>9}: {message.content}")


if __name__ == "__main__":
    asyncio.run(main())
