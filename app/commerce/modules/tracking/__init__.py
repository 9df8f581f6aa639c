"""
Behavior tracking.

- queue.py: in-process event cache (priority, batching, retry/backoff, online/offline)
- client.py: HTTP transport for batches and session summaries
- service.py / admin.py: ingestion endpoints and behavior analytics
"""
