"""Engagement tracking: contacts, message log, daily analytics."""
