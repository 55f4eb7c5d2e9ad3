"""Template-driven notifications about consumer group status, sent by e-mail or HTTP."""

__version__ = "0.1.0"

__all__ = [
    "base",
    "config",
    "coordinator",
    "email_notifier",
    "http_notifier",
    "status",
    "templates",
]