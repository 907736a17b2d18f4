from .carrier_poll import carrier_poll_task

__all__ = [
    "carrier_poll_task",
]
