"""
taskflow: collaborative task tracking core.

Subpackages:
- tasks: records, lifecycle engine, synchronization core
- store: entity store adapter and backends (SQLite, in-memory)
- views: filtered lists, dashboard buckets, live projections
- notifications / accounts: approval notices and sign-in registration
- cli / connectors: console entrypoint
"""
