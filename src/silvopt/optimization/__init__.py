"""Optimization layer: heuristic parameters and solvers."""
