from .background import *
from .cron import *

__all__ = [
    "carrier_poll_task",
    # Scheduled/Cron Tasks
    "poll_scheduler_task",
]
