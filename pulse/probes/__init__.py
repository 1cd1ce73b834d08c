"""
Pulse probes: shallow and deep health checks per dependency.

- database: relational store pool / SELECT 1
- redis: PING / INFO memory
- llm: OpenRouter key / models + credits
- ollama: local runtime version, models
- whatsapp: Evolution gateway and channel status
- queue: scheduler worker and queue depth
- knowledge: document table and search
"""

from pulse.probes.base import CheckOutcome, HealthProbe
from pulse.probes.cache import RedisProbe
from pulse.probes.database import DatabaseProbe
from pulse.probes.knowledge import KnowledgeProbe
from pulse.probes.llm import OpenRouterProbe
from pulse.probes.ollama import OllamaProbe
from pulse.probes.queue import QueueProbe, QueueStats
from pulse.probes.registry import ProbeRegistry
from pulse.probes.whatsapp import WhatsAppGatewayProbe


__all__ = [
    "CheckOutcome",
    "HealthProbe",
    "ProbeRegistry",
    "DatabaseProbe",
    "RedisProbe",
    "OpenRouterProbe",
    "OllamaProbe",
    "WhatsAppGatewayProbe",
    "QueueProbe",
    "QueueStats",
    "KnowledgeProbe",
]
