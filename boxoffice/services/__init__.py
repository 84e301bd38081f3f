"""Domain services: idempotent actions, external clients and pipelines."""
