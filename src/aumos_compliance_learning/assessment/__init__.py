"""Assessment scheduling and evidence-based execution.

Modules:
- scheduling: Next-run computation per frequency
- evaluator: Evidence rating, learning boost, review routing and scoring
"""
