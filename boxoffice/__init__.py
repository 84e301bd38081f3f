"""Boxoffice - subscription-box back office

Durable work queue, idempotent actions and calendar-removal pipeline for a
Shopify subscription store.
"""

__version__ = "0.1.0"
