"""
Celery tasks for device state persistence and periodic polling.
"""
from .device_tasks import (
    persist_device_status,
    refresh_all_devices,
)
