"""Allow ``python -m cronspine.cli``."""

from cronspine.cli.app import app

app()
