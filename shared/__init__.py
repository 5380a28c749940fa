"""
Shared utilities for the flow console.

- logging_config: process-wide logging setup used by the launcher
"""
