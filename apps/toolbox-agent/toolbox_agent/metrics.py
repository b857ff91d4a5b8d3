import os
import time
from typing import Any, Dict

import psutil

_STARTED_AT = time.time()


def collect_metrics() -> Dict[str, Any]:
    data_root = os.environ.get("TOOLBOX_AGENT_DATA_ROOT", "/")
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(data_root)
    return {
        "cpu_percent": psutil.cpu_percent(interval=None),
        "cpu_count": psutil.cpu_count(),
        "load_average": list(os.getloadavg()) if hasattr(os, "getloadavg") else [],
        "memory_total_bytes": memory.total,
        "memory_used_bytes": memory.used,
        "memory_percent": memory.percent,
        "disk_total_bytes": disk.total,
        "disk_used_bytes": disk.used,
        "disk_percent": disk.percent,
        "uptime_seconds": int(time.time() - _STARTED_AT),
    }
