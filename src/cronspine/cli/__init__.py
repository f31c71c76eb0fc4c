"""cronspine command-line interface."""
