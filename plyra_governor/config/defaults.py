"""
Default Configuration
~~~~~~~~~~~~~~~~~~~~~

Sensible defaults for plyra-governor when no config file is provided.
"""

from __future__ import annotations

__all__ = ["DEFAULT_CONFIG"]

DEFAULT_CONFIG: dict = {
    "version": "1.0",
    "budget": {
        "default_model": "claude-sonnet-4",
        "chars_per_token": 4,
        "ops_per_minute": 2.0,
        "default_warning_threshold": 0.8,
        "projection_minutes": 30,
    },
    "policy_engine": {
        "no_match_action": "queue",
        "install_defaults": True,
        "min_priority": -10000,
        "max_priority": 10000,
        "max_name_length": 200,
        "max_matcher_length": 1000,
    },
    "policies": [],
    "queue": {
        "pending_ttl_seconds": None,
    },
    "agent_tree": {
        "cleanup_max_age_hours": 72,
    },
    "coordinator": {
        "event_max_age_seconds": 3600,
        "stale_agent_max_idle_seconds": 86400,
    },
    "maintenance": {
        "interval_seconds": 300,
    },
    "storage": {
        "db_path": None,
    },
    "observability": {
        "exporters": ["stdout"],
        "decision_log_max_entries": 10000,
    },
    "sidecar": {
        "host": "127.0.0.1",
        "port": 23847,
    },
}
