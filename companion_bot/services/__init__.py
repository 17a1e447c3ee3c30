from .daily_fact import DailyFactService, FactTopicLog
from .gemini_client import GeminiClient
from .query_optimizer import QueryOptimizer

__all__ = ["DailyFactService", "FactTopicLog", "GeminiClient", "QueryOptimizer"]
