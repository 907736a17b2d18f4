from .poll_scheduler import poll_scheduler_task

__all__ = [
    "poll_scheduler_task",
]
