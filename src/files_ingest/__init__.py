"""
Files Ingest API.

Upload admission, file queries, shares and audit over a storage-offloaded
upload path. Processing runs in ``ingest_workers``.
"""
