"""
Transport-level request interception.

- rules.py: ordered classification table and response cache class configs
- response_cache.py: named, insertion-ordered response caches (aiosqlite)
- fetcher.py: network fetch callables (httpx)
- messages.py: control messages from the application (pydantic)
- interceptor.py: cache-first / network-first strategies and lifecycle
"""

from warmcache.interceptor.fetcher import Fetcher, HttpxFetcher
from warmcache.interceptor.interceptor import AgentState, RequestInterceptor
from warmcache.interceptor.response_cache import ResponseCache, ResponseCacheStorage
from warmcache.interceptor.rules import (
    RESOURCE_CLASSES,
    ClassificationRule,
    RequestClassifier,
    build_default_rules,
    glob_rule,
    regex_rule,
    resolve_resource_class,
)

__all__ = [
    "RESOURCE_CLASSES",
    "AgentState",
    "ClassificationRule",
    "Fetcher",
    "HttpxFetcher",
    "RequestClassifier",
    "RequestInterceptor",
    "ResponseCache",
    "ResponseCacheStorage",
    "build_default_rules",
    "glob_rule",
    "regex_rule",
    "resolve_resource_class",
]
