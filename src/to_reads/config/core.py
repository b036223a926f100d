import logging
import os

from .loader import numeric

logger = logging.getLogger(__name__)

_DEFAULT_API_BASE_URL = "http://localhost:8080/api"


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


class Core:
    def __init__(self, config: dict | None = None) -> None:
        cfg = (config or {}).get("to_reads", {})
        api_cfg = cfg.get("api", {})

        self.API_BASE_URL: str = str(
            api_cfg.get("base_url") or os.getenv("TO_READS_API_BASE_URL", _DEFAULT_API_BASE_URL)
        ).rstrip("/")
        self.REQUEST_TIMEOUT: float = _positive(
            "REQUEST_TIMEOUT",
            numeric("REQUEST_TIMEOUT", api_cfg.get("request_timeout", os.getenv("TO_READS_REQUEST_TIMEOUT", "15")), float),
        )
        self.PAGE_SIZE: int = numeric("PAGE_SIZE", api_cfg.get("page_size", os.getenv("TO_READS_PAGE_SIZE", "20")), int)
        _positive("PAGE_SIZE", self.PAGE_SIZE)

        if not self.API_BASE_URL.startswith(("http://", "https://")):
            raise ValueError(f"API_BASE_URL must be an http(s) URL, got {self.API_BASE_URL!r}")

        logger.debug("Using API base URL %s", self.API_BASE_URL)
