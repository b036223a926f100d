import os

from .loader import numeric


class View:
    def __init__(self, config: dict | None = None) -> None:
        view_cfg = (config or {}).get("to_reads", {}).get("view", {})
        self.ROW_HEIGHT: float = numeric(
            "ROW_HEIGHT", view_cfg.get("row_height", os.getenv("TO_READS_ROW_HEIGHT", "160")), float
        )
        self.OVERSCAN: int = numeric("OVERSCAN", view_cfg.get("overscan", os.getenv("TO_READS_OVERSCAN", "6")), int)
        self.VIEWPORT_HEIGHT: float = numeric(
            "VIEWPORT_HEIGHT", view_cfg.get("viewport_height", os.getenv("TO_READS_VIEWPORT_HEIGHT", "700")), float
        )
        if self.ROW_HEIGHT <= 0:
            raise ValueError(f"ROW_HEIGHT must be positive, got {self.ROW_HEIGHT}")
        if self.OVERSCAN < 0:
            raise ValueError(f"OVERSCAN must be >= 0, got {self.OVERSCAN}")
