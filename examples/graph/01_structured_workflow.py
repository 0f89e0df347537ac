"""
Structured Workflow Example

This example demonstrates:
1. A pydantic model as the graph state
2. Sequential nodes and a conditional retry loop
3. Streaming per-node updates and rendering the graph as Mermaid

The workflow:
- Drafts a short summary of the input text
- Grades the draft (length and keyword coverage)
- Loops back to revise until the grade passes or attempts run out
"""

import asyncio
from typing import Annotated, List

from pydantic import BaseModel, Field

from stepgraph import END, START, StateGraph, append, configure_logging, LogLevel, LogComponent
from stepgraph.core.logging import Colors, get_logger

logger = get_logger(LogComponent.WORKFLOW)

MAX_ATTEMPTS = 3


class Review(BaseModel):
    """State of the summarize/grade loop."""
    text: str = ""
    keywords: List[str] = Field(default_factory=list)
    draft: str = ""
    score: float = 0.0
    attempts: int = 0
    feedback: Annotated[List[str], append] = Field(default_factory=list)


def summarize(state: Review) -> dict:
    """Keep the first sentences, one more on every attempt."""
    sentences = [s.strip() for s in state.text.split(".") if s.strip()]
    draft = ". ".join(sentences[: state.attempts + 1]) + "."
    return {"draft": draft, "attempts": state.attempts + 1}


def grade(state: Review) -> dict:
    covered = [k for k in state.keywords if k.lower() in state.draft.lower()]
    score = len(covered) / max(len(state.keywords), 1)
    missing = sorted(set(state.keywords) - set(covered))
    return {
        "score": score,
        "feedback": [f"attempt {state.attempts}: score={score:.2f} missing={missing}"],
    }


def route_grade(state: Review) -> str:
    if state.score >= 1.0:
        return "pass"
    if state.attempts >= MAX_ATTEMPTS:
        return "give_up"
    return "revise"


def build_graph():
    graph = StateGraph(Review)
    graph.add_node("summarize", summarize)
    graph.add_node("grade", grade)

    graph.add_edge(START, "summarize")
    graph.add_edge("summarize", "grade")
    graph.add_conditional_edges(
        "grade",
        route_grade,
        {"pass": END, "give_up": END, "revise": "summarize"},
    )
    return graph.compile(name="review")


async def main():
    """Run the structured workflow."""
    configure_logging(default_level=LogLevel.INFO)
    app = build_graph()

    print(f"\n{Colors.INFO}Graph:{Colors.RESET}")
    print(app.get_graph().draw_mermaid())

    text = (
        "Supersteps run every ready node at once. "
        "Reducers merge their updates into one state. "
        "Checkpoints make every step resumable."
    )
    inputs = {"text": text, "keywords": ["supersteps", "reducers", "checkpoints"]}

    try:
        async for update in app.astream(inputs, stream_mode="updates"):
            for node, values in update.items():
                print(f"{Colors.SUCCESS}{node}{Colors.RESET}: {values}")

        result = await app.ainvoke(inputs)
    except Exception as e:
        logger.error(f"Workflow failed: {str(e)}")
        raise

    print(f"\n{Colors.INFO}Final draft:{Colors.RESET} {result['draft']}")
    for line in result["feedback"]:
        print(f"  - {line}")


if __name__ == "__main__":
    asyncio.run(main())
