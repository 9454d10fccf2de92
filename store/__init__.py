"""
Store module for the versioned object store.

The Store component keeps the records of every registered resource type and
serves them over HTTP.

Key responsibilities:
- Create, read, list, patch, replace and delete records
- Maintain an ETag and a generation number for each record
- Reject writes whose `prev` snapshot is stale (optimistic concurrency)
- Push record changes to SSE subscribers
- Persist records in TinyDB
"""

__version__ = "1.0.0"
