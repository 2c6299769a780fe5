"""
Files Ingest persistence layer.

SQLite tables for users, files, shares and audit logs. Every function takes a
``db_path`` so the API, the worker and the tests can each point at their own
database file.
"""
