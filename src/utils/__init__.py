"""
Generic utility functions shared across modules.

Includes return and moving-average helpers.
"""
