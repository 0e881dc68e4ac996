"""Application modules.

- subscription: Subscriptions, payment history, dashboard and reminders
"""
