"""Distributed cron building blocks: command execution, plan scheduling, workflow state, stream registry, temporary tasks and webhooks."""

__version__ = "0.1.0"