"""to-reads: client-side synchronization core for a feed reading dashboard.

``to_reads.query`` holds the cache, fetch and mutation machinery;
``to_reads.dashboard`` builds the reader's lists and actions on top of it;
``to_reads.clients`` talks to the backend.
"""

__version__ = "0.1.0"
