"""
Adapter layer for Files Ingest.

Contains abstraction adapters for blob storage (local/S3), queuing (local/SQS)
and malware scanning. Provides mode-aware implementations that work across
deployment environments.
"""
