"""
Listing Sync

Multi-strategy evaluation synchronization for the seller dashboard:
1. Triggers the external SEO worker for a listing
2. Detects job completion over a push channel and a poll, exactly once
3. Persists one evaluation per strategy mode with its own keyword pool
4. Keeps the active result, all evaluations and all keyword stats in sync
"""

__version__ = "0.1.0"
