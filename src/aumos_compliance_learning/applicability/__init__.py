"""Framework applicability scoring.

Modules:
- rules: Built-in weighted applicability rules per catalog framework
- scorer: Rule evaluation and the discovered-framework heuristic
"""
