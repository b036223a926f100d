from .api import ReaderAPI, wire_id

__all__ = ["ReaderAPI", "wire_id"]
