# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Every variable is optional; `taskflow` starts with a local SQLite store and a local user.

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TASKFLOW_APP_NAME": "App display name (default: taskflow).",
    "TASKFLOW_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "TASKFLOW_DATA_DIR": "Local data directory, also holds taskflow.log (default: .local/taskflow).",
    "TASKFLOW_STORE_DB_PATH": "SQLite store path (default: <data_dir>/store.sqlite3).",
    # Entity store
    "TASKFLOW_STORE_BACKEND": "sqlite (shared file, polled) or memory (per process) (default: sqlite).",
    "TASKFLOW_STORE_POLL_SECONDS": "How often the SQLite feed checks for changes (default: 1.0).",
    "TASKFLOW_STORE_TIMEOUT_SECONDS": "Timeout for a single store write (default: 10.0).",
    "TASKFLOW_RESUBSCRIBE_DELAY_SECONDS": "Pause before re-opening a failed feed (default: 5.0).",
    # Administration
    "TASKFLOW_ADMIN_EMAIL": "Email of the administrator (auto-approved, may close tasks).",
    "TASKFLOW_ADMIN_RECIPIENT": "Recipient id of approval notices (default: admin).",
    # Sync / views
    "TASKFLOW_OPTIMISTIC_WRITES": "Show own writes before the store confirms them (default: true).",
    "TASKFLOW_VIEW_REFRESH_SECONDS": "Re-derive views this often so overdue stays current (default: 30).",
    # Console connector
    "TASKFLOW_CONSOLE_ENABLED": "Enable console connector (true/false, default: true).",
    # Local identity
    "TASKFLOW_USER_ID": "Signed-in user id (default: user email, or local-user).",
    "TASKFLOW_USER_EMAIL": "Signed-in user email.",
    "TASKFLOW_USER_NAME": "Display name (default: user id).",
    "TASKFLOW_USER_AVATAR_URI": "Optional avatar URI.",
}
