# hubcrawl/__init__.py
"""
Hub-discovery crawler package.

Exposes the main public surface so callers can do:
    from hubcrawl import Config, CrawlController
"""
from .config import Config
from .controller import CrawlController, RunReport
from .gazetteer import StaticGazetteer
from .models import Mode
from .storage import JsonFileStorage, MemoryStorage
from .telemetry import TelemetryBus

__all__ = [
    "Config",
    "CrawlController",
    "JsonFileStorage",
    "MemoryStorage",
    "Mode",
    "RunReport",
    "StaticGazetteer",
    "TelemetryBus",
]
__version__ = "0.1.0"
