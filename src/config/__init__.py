"""
Configuration loading and validation for sweep run-time settings.

Provides a strongly typed settings object for result paths, worker pools,
sampling defaults, and timeouts, validated upfront.
"""
