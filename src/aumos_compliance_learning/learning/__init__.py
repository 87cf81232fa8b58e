"""Learning feedback loop.

Modules:
- feedback: Feedback decision table and prompt rewriting
"""
