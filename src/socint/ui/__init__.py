"""
HTTP API module.

Provides REST endpoints for manually triggering playbook runs and reading
execution records.
"""

__all__ = ["http_server", "playbook_api"]
