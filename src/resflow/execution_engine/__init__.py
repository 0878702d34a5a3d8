"""Execution of workflow graphs: tool invocation and dependency-ordered scheduling."""
