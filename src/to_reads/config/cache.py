import os

from .loader import numeric


class Cache:
    def __init__(self, config: dict | None = None) -> None:
        cache_cfg = (config or {}).get("to_reads", {}).get("cache", {})
        # Seconds a fresh entry is served without refetching; negative disables expiry.
        self.STALE_SECONDS: float = numeric(
            "STALE_SECONDS", cache_cfg.get("stale_seconds", os.getenv("TO_READS_STALE_SECONDS", "30")), float
        )
        # Idle window before an entry without subscribers is collected.
        self.GC_SECONDS: float = numeric(
            "GC_SECONDS", cache_cfg.get("gc_seconds", os.getenv("TO_READS_GC_SECONDS", "300")), float
        )
        if self.GC_SECONDS < 0:
            raise ValueError(f"GC_SECONDS must be >= 0, got {self.GC_SECONDS}")
