"""
Background processing for Files Ingest.

The worker pulls processing jobs off the queue and runs each file through the
pipeline that hashes, sniffs, scans and classifies it.
"""
