"""Server-side ordering engine for the task board.

This package provides the task/status model, order-key allocation, group
rebalancing, the file-backed board store and the move orchestrator that ties
them together.
"""
