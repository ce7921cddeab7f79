"""Pytest configuration and fixtures shared across all test modules.

This file is loaded by pytest before any test module. TESTING is set first so
no .env file is loaded, and default capacities are pinned so tests do not
depend on the developer's environment.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("LIMITS_SEARCH_CONCURRENCY", "2")
os.environ.setdefault("LIMITS_GEOCODING_CONCURRENCY", "3")
os.environ.setdefault("LIMITS_MAP_DATA_CONCURRENCY", "5")
os.environ.setdefault("LOG_LEVEL", "WARNING")
