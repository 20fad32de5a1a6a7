"""
Scheduler module for periodic sync cycles.
"""
from .jobs import SyncJobRunner, setup_scheduler, shutdown_scheduler, scheduler

__all__ = ["SyncJobRunner", "setup_scheduler", "shutdown_scheduler", "scheduler"]
