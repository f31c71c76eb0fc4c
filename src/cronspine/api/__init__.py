"""HTTP API for cron-spine (thin transport over ``SchedulerEngine``)."""

from cronspine.api.app import create_app

__all__ = ["create_app"]
