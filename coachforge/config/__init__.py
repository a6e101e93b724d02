"""Application configuration module.

- **settings.py**: Environment-based settings (Pydantic BaseSettings)
  - Database URL, completion/embedding endpoints, retry budgets
  - Retrieval thresholds, chat limits, rate limits, outbox policy
  - Loaded from .env file via pydantic-settings
"""
from coachforge.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
