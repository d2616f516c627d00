"""
Host memory and CPU usage.
"""

import psutil

from notebook_ctl.models import CpuUsage, MemoryUsage, UsageResponse


def get_usage() -> UsageResponse:
    memory = psutil.virtual_memory()
    return UsageResponse(
        memory=MemoryUsage(
            total=memory.total,
            available=memory.available,
            percent=memory.percent,
            used=memory.used,
            free=memory.free,
        ),
        cpu=CpuUsage(percent=psutil.cpu_percent(interval=None)),
    )
