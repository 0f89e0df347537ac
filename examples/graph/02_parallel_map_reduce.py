"""
Parallel Map-Reduce Example

This example demonstrates:
1. Fan-out with Send: one task per document, each with its own input
2. Reducers merging the parallel results in a single superstep
3. Bounding concurrency with max_concurrency
4. Progress reporting through the custom stream mode
"""

import asyncio
import operator
from collections import Counter
from typing import Annotated, Dict, List, TypedDict

from stepgraph import END, START, Send, StateGraph, append, get_stream_writer, merge_dicts
from stepgraph.core.logging import Colors, LogComponent, configure_logging, get_logger, LogLevel

logger = get_logger(LogComponent.WORKFLOW)

###################################################################
# State
###################################################################

class Corpus(TypedDict):
    documents: Dict[str, str]
    counts: Annotated[Dict[str, int], merge_dicts]
    processed: Annotated[List[str], append]
    total_words: Annotated[int, operator.add]
    top_words: List[str]


class DocumentTask(TypedDict):
    name: str
    text: str

###################################################################
# Nodes
###################################################################

def fan_out(state: Corpus) -> List[Send]:
    return [
        Send("count_words", {"name": name, "text": text})
        for name, text in state["documents"].items()
    ]


async def count_words(task: DocumentTask) -> dict:
    """Count words of one document; runs once per Send."""
    writer = get_stream_writer()
    writer({"document": task["name"], "status": "started"})
    await asyncio.sleep(0.05)
    words = task["text"].lower().split()
    writer({"document": task["name"], "status": "done", "words": len(words)})
    return {
        "counts": {task["name"]: len(words)},
        "processed": [task["name"]],
        "total_words": len(words),
    }


def reduce_counts(state: Corpus) -> dict:
    words = Counter(" ".join(state["documents"].values()).lower().split())
    return {"top_words": [word for word, _ in words.most_common(3)]}


def build_graph():
    graph = StateGraph(Corpus)
    graph.add_node("count_words", count_words)
    graph.add_node("reduce", reduce_counts)

    graph.add_conditional_edges(START, fan_out)
    graph.add_edge("count_words", "reduce")
    graph.add_edge("reduce", END)
    return graph.compile(name="map_reduce")


async def main():
    configure_logging(default_level=LogLevel.INFO)
    app = build_graph()

    documents = {
        "alpha": "graphs route state through nodes and edges",
        "beta": "nodes return updates and reducers merge updates",
        "gamma": "checkpoints store state after every superstep",
        "delta": "state flows from node to node",
    }
    config = {"max_concurrency": 2}

    print(f"\n{Colors.INFO}Progress:{Colors.RESET}")
    result = None
    async for mode, chunk in app.astream(
        {"documents": documents}, config, stream_mode=["custom", "values"]
    ):
        if mode == "custom":
            print(f"  {chunk}")
        else:
            result = chunk

    print(f"\n{Colors.SUCCESS}Processed:{Colors.RESET} {result['processed']}")
    print(f"Counts: {result['counts']}")
    print(f"Total words: {result['total_words']}")
    print(f"Top words: {result['top_words']}")


if __name__ == "__main__":
    asyncio.run(main())
