"""Cancelled-subscriber removal from event calendars."""
