"""cron-spine: cron-driven job scheduling with a durable execution history.

Packages::

    cronspine.core         errors, logging, settings, cron evaluator, models, SQLite
    cronspine.execution    job executor protocol, registry, HTTP job
    cronspine.scheduling   Trigger Store, Scheduler Service, history, retention, engine
    cronspine.api          FastAPI transport
    cronspine.cli          Typer CLI
"""

__version__ = "0.1.0"
