"""Reserved node names and keys."""

START = "__start__"
"""Entry marker: edges from START pick the first superstep's nodes."""

END = "__end__"
"""Terminal marker: routing to END schedules nothing."""

INTERRUPT_KEY = "__interrupt__"
"""Key under which pending interrupts are reported in results and updates."""

RESERVED_NAMES = frozenset({START, END, INTERRUPT_KEY})

NS_SEP = "|"
"""Separator used when deriving subgraph thread ids."""
