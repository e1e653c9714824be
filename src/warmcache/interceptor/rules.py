"""
Request classification.

A fixed, ordered rule table maps a request URL to a response cache class;
the first matching rule wins and anything unmatched falls through to the
dynamic (network-first) class. Rules are configuration, not runtime state.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from urllib.parse import SplitResult, urljoin, urlsplit

from warmcache.logging import get_logger
from warmcache.types import (
    Classification,
    Request,
    ResourceClass,
    ResourceClassConfig,
    Strategy,
)

logger = get_logger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

DEFAULT_RESOURCE_CLASS = ResourceClass.DYNAMIC
INTERCEPTED_METHODS = frozenset({"GET"})
INTERCEPTED_SCHEMES = frozenset({"http", "https"})

RESOURCE_CLASSES: dict[ResourceClass, ResourceClassConfig] = {
    ResourceClass.STATIC: ResourceClassConfig(
        name=ResourceClass.STATIC,
        max_age_ms=30 * DAY_MS,
        strategy=Strategy.CACHE_FIRST,
        max_entries=50,
    ),
    # Hashed bundle names, safe to keep for a week
    ResourceClass.CHUNKS: ResourceClassConfig(
        name=ResourceClass.CHUNKS,
        max_age_ms=7 * DAY_MS,
        strategy=Strategy.CACHE_FIRST,
        max_entries=100,
    ),
    ResourceClass.IMAGES: ResourceClassConfig(
        name=ResourceClass.IMAGES,
        max_age_ms=7 * DAY_MS,
        strategy=Strategy.CACHE_FIRST,
        max_entries=200,
    ),
    ResourceClass.API: ResourceClassConfig(
        name=ResourceClass.API,
        max_age_ms=HOUR_MS,
        strategy=Strategy.NETWORK_FIRST,
        max_entries=100,
    ),
    ResourceClass.DYNAMIC: ResourceClassConfig(
        name=ResourceClass.DYNAMIC,
        max_age_ms=DAY_MS,
        strategy=Strategy.NETWORK_FIRST,
        max_entries=50,
    ),
}


class MatchTarget(str, Enum):
    """URL component a rule pattern is tested against."""

    PATH = "path"
    HOST = "host"
    HREF = "href"


class OriginScope(str, Enum):
    """Which origins a rule applies to."""

    ANY = "any"
    SAME = "same"
    CROSS = "cross"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table."""

    name: str
    pattern: re.Pattern[str]
    resource_class: ResourceClass
    target: MatchTarget = MatchTarget.PATH
    scope: OriginScope = OriginScope.ANY

    def matches(self, parts: SplitResult, origin_host: str) -> bool:
        """Test the rule against a split absolute URL."""
        same_origin = parts.hostname == origin_host
        if self.scope == OriginScope.SAME and not same_origin:
            return False
        if self.scope == OriginScope.CROSS and same_origin:
            return False

        if self.target == MatchTarget.HOST:
            subject = parts.hostname or ""
        elif self.target == MatchTarget.HREF:
            subject = parts.geturl()
        else:
            subject = parts.path or "/"
        return self.pattern.search(subject) is not None


def regex_rule(
    name: str,
    pattern: str,
    resource_class: ResourceClass,
    target: MatchTarget = MatchTarget.PATH,
    scope: OriginScope = OriginScope.ANY,
) -> ClassificationRule:
    """Build a rule from a regular expression."""
    return ClassificationRule(name, re.compile(pattern), resource_class, target, scope)


def glob_rule(
    name: str,
    pattern: str,
    resource_class: ResourceClass,
    target: MatchTarget = MatchTarget.PATH,
    scope: OriginScope = OriginScope.ANY,
) -> ClassificationRule:
    """Build a rule from a shell-style glob ("*.js" matches any .js path)."""
    return ClassificationRule(
        name, re.compile(fnmatch.translate(pattern)), resource_class, target, scope
    )


def _host_pattern(hosts: Iterable[str]) -> str | None:
    escaped = [re.escape(host) for host in hosts if host]
    if not escaped:
        return None
    return r"(^|\.)(" + "|".join(escaped) + r")$"


def build_default_rules(
    reference_hosts: Sequence[str] = (),
    data_hosts: Sequence[str] = (),
    app_route_prefixes: Sequence[str] = (),
) -> tuple[ClassificationRule, ...]:
    """Build the standard rule table.

    Order: static assets, bundle chunks, build assets, web fonts, reference
    APIs, external media, dynamic data endpoints, navigation routes.
    """
    rules: list[ClassificationRule] = [
        regex_rule("static-assets", r"\.(css|woff2?|ttf|eot|ico|svg)$", ResourceClass.STATIC),
        regex_rule("bundle-chunks", r"/assets/.*\.js$", ResourceClass.CHUNKS),
        regex_rule("build-assets", r"/assets/.*\.(css|json)$", ResourceClass.STATIC),
        regex_rule(
            "web-fonts",
            r"^fonts\.(googleapis|gstatic)\.com$",
            ResourceClass.STATIC,
            target=MatchTarget.HOST,
        ),
    ]

    reference = _host_pattern(reference_hosts)
    if reference:
        rules.append(
            regex_rule("reference-api", reference, ResourceClass.API, target=MatchTarget.HOST)
        )

    rules.append(
        regex_rule(
            "external-media",
            r"\.(jpe?g|png|webp|gif|avif)$",
            ResourceClass.IMAGES,
            scope=OriginScope.CROSS,
        )
    )

    data = _host_pattern(data_hosts)
    if data:
        rules.append(regex_rule("data-api", data, ResourceClass.API, target=MatchTarget.HOST))
    rules.append(regex_rule("same-origin-api", r"^/api/", ResourceClass.API, scope=OriginScope.SAME))

    prefixes = [re.escape(p.strip("/")) for p in app_route_prefixes if p.strip("/")]
    if prefixes:
        route_pattern = r"^/(?:(?:" + "|".join(prefixes) + r")(?:/|$)|$)"
    else:
        route_pattern = r"^/$"
    rules.append(
        regex_rule("app-routes", route_pattern, ResourceClass.DYNAMIC, scope=OriginScope.SAME)
    )
    return tuple(rules)


def resolve_resource_class(name: str) -> ResourceClass:
    """Resolve a response cache class by name.

    Unknown names fall back to the dynamic class with a warning.
    """
    try:
        return ResourceClass(name)
    except ValueError:
        logger.warning(
            "Unknown resource class, falling back",
            requested=name,
            fallback=DEFAULT_RESOURCE_CLASS.value,
        )
        return DEFAULT_RESOURCE_CLASS


class RequestClassifier:
    """Evaluates the rule table for requests against one application origin."""

    def __init__(
        self,
        origin: str,
        rules: Sequence[ClassificationRule] | None = None,
        classes: dict[ResourceClass, ResourceClassConfig] | None = None,
    ) -> None:
        self.origin = origin.rstrip("/")
        self.origin_host = urlsplit(self.origin).hostname or ""
        self.rules = tuple(rules) if rules is not None else build_default_rules()
        self.classes = dict(classes or RESOURCE_CLASSES)

    def absolute(self, url: str) -> str:
        """Resolve a possibly relative URL against the origin."""
        return urljoin(self.origin + "/", url)

    def config_for(self, resource_class: ResourceClass) -> ResourceClassConfig:
        return self.classes[resource_class]

    def is_interceptable(self, request: Request) -> bool:
        """Only reads over http(s) are intercepted."""
        if request.method.upper() not in INTERCEPTED_METHODS:
            return False
        scheme = urlsplit(self.absolute(request.url)).scheme
        return scheme in INTERCEPTED_SCHEMES

    def classify(self, url: str) -> Classification:
        """Classify a URL; the first matching rule wins."""
        parts = urlsplit(self.absolute(url))
        for rule in self.rules:
            if rule.matches(parts, self.origin_host):
                config = self.classes[rule.resource_class]
                return Classification(rule.name, rule.resource_class, config.strategy)

        config = self.classes[DEFAULT_RESOURCE_CLASS]
        return Classification("default", DEFAULT_RESOURCE_CLASS, config.strategy)
