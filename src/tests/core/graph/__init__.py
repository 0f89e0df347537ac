"""Test suite for the stepgraph state graph.

This package covers the graph runtime, organized as:

1. Builder (test_base.py)
   - Node registration and edge validation
   - Conditional edges and path maps

2. Nodes (nodes/)
   - Node and FunctionNode behavior
   - error_handler routing

3. State (test_state.py, test_reducers.py)
   - Schema resolution and validation
   - Reducer merges and message channels

4. Execution (test_execution.py, test_interrupts.py, test_subgraphs.py)
   - Supersteps, Send fan-out and Command
   - interrupt/resume and breakpoints
   - Nested graphs

5. History and output (test_time_travel.py, test_streaming.py, test_viz.py)
   - Replay and forks
   - Stream modes
   - Mermaid rendering
"""
