"""Subscription Tracker Backend Application.

Tracks recurring bills, derives their next billing dates and forecasts
monthly spend per currency.

Modules:
    - core: Configuration, database, Celery, logging and tracing setup
    - modules.subscription: Billing date calculator, status engine, API
"""

__version__ = "0.1.0"
