"""API routers for the boxoffice service."""

from boxoffice.routers import cron, health, ops, removals, subscriptions, webhooks

__all__ = ["cron", "health", "ops", "removals", "subscriptions", "webhooks"]
