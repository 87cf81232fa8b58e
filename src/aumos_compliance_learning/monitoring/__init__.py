"""Regulatory change monitoring.

Modules:
- change_detection: Due-check, content hashing and source health transitions
"""
