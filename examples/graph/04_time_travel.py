"""
Time Travel Example

This example demonstrates:
1. Persisting a thread with FileCheckpointStore
2. Listing the checkpoint history of the thread
3. Replaying from a past checkpoint
4. Forking with edited state, in place and into a new thread
"""

import asyncio
import tempfile
from typing import Annotated, List, TypedDict

from stepgraph import END, START, FileCheckpointStore, StateGraph, append
from stepgraph.core.logging import Colors, LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.WORKFLOW)


class Trip(TypedDict):
    city: str
    budget: int
    itinerary: Annotated[List[str], append]


def plan(state: Trip) -> dict:
    return {"itinerary": [f"plan a visit to {state['city']}"]}


def book(state: Trip) -> dict:
    hotel = "hostel" if state["budget"] < 500 else "hotel"
    return {"itinerary": [f"book a {hotel} in {state['city']}"]}


def confirm(state: Trip) -> dict:
    return {"itinerary": [f"confirm trip (budget {state['budget']})"]}


def build_graph(checkpointer):
    graph = StateGraph(Trip)
    graph.chain([plan, book, confirm])
    graph.add_edge("confirm", END)
    return graph.compile(checkpointer=checkpointer, name="trip")


def show(title: str, values: dict) -> None:
    print(f"\n{Colors.INFO}{title}{Colors.RESET}")
    for item in values["itinerary"]:
        print(f"  - {item}")


async def main():
    configure_logging(default_level=LogLevel.WARNING)

    with tempfile.TemporaryDirectory() as directory:
        app = build_graph(FileCheckpointStore(directory))
        config = {"configurable": {"thread_id": "trip-1"}}

        result = await app.ainvoke({"city": "Lisbon", "budget": 300}, config)
        show("Original run", result)

        print(f"\n{Colors.INFO}History (newest first){Colors.RESET}")
        history = await app.aget_state_history(config)
        for snapshot in history:
            print(
                f"  step={snapshot.step:>2} source={snapshot.metadata['source']:<6} "
                f"next={snapshot.next} id={snapshot.config.checkpoint_id[:8]}"
            )

        before_book = next(s for s in history if s.next == ("book",))

        # Replay: book and confirm run again from the stored state
        replayed = await app.ainvoke(None, before_book.config)
        show("Replayed from before 'book'", replayed)

        # Fork in place with a bigger budget
        fork_config = await app.aupdate_state(before_book.config, {"budget": 1200})
        forked = await app.ainvoke(None, fork_config)
        show("Forked with budget=1200", forked)

        # Fork into a separate thread; trip-1 keeps its latest state
        other = await app.aupdate_state(
            before_book.config, {"city": "Porto"}, new_thread_id="trip-porto"
        )
        porto = await app.ainvoke(None, other)
        show("New thread trip-porto", porto)

        latest = await app.aget_state(config)
        show("trip-1 is unchanged by the new thread", latest.values)


if __name__ == "__main__":
    asyncio.run(main())
