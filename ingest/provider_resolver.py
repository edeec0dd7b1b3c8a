#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Provider resolution: map an extracted counterparty (name and tax id) to a
known provider of the tenant.

Strategies, first match wins, active providers only:
  1. exact tax id (digits only)
  2. case-insensitive exact legal name
  3. case-insensitive exact alias
  4. fuzzy similarity over legal name and aliases, accepted at >= threshold

Ties at equal score go to the provider with more documents, then the
lexicographically smallest id.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from difflib import SequenceMatcher
from functools import lru_cache
from typing import Any, Optional, Protocol

from config.constant import (
    PROVIDER_FUZZY_THRESHOLD,
    PROVIDER_MIN_WORD_LENGTH,
    PROVIDER_PARTIAL_MIN_LENGTH,
    PROVIDER_PARTIAL_WEIGHT,
)

logger = logging.getLogger(__name__)

_ws = re.compile(r"\s+")
_non_alnum = re.compile(r"[^a-z0-9\s]")
_non_digit = re.compile(r"\D")


class MatchMethod:
    TAX_ID = "tax_id"
    LEGAL_NAME = "legal_name"
    ALIAS = "alias"
    FUZZY = "fuzzy"


def digits_only(value: Optional[str]) -> str:
    if not value:
        return ""
    return _non_digit.sub("", str(value))


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@lru_cache(maxsize=4096)
def normalise_provider_name(name: Optional[str]) -> str:
    """Lowercase, accent-folded, punctuation stripped, whitespace collapsed."""
    if not name:
        return ""
    s = _fold(str(name)).lower()
    s = _non_alnum.sub("", _ws.sub(" ", s))
    return _ws.sub(" ", s).strip()


def _exact_key(name: Optional[str]) -> str:
    if not name:
        return ""
    return _ws.sub(" ", str(name)).strip().casefold()


@dataclass(frozen=True)
class ProviderCandidate:
    id: str
    legal_name: str
    tax_id: Optional[str] = None
    aliases: tuple[str, ...] = ()
    active: bool = True
    default_letter: Optional[str] = None

    @classmethod
    def from_model(cls, provider: Any) -> "ProviderCandidate":
        return cls(
            id=provider.id,
            legal_name=provider.legal_name or "",
            tax_id=provider.tax_id,
            aliases=tuple(a for a in (provider.aliases or []) if isinstance(a, str)),
            active=bool(provider.active),
            default_letter=provider.default_letter,
        )

    def names(self) -> tuple[str, ...]:
        return (self.legal_name,) + self.aliases


@dataclass(frozen=True)
class ProviderMatch:
    provider: ProviderCandidate
    method: str
    score: float
    # Tax id to record on a provider matched by name that has none.
    backfill_tax_id: Optional[str] = None

    @property
    def provider_id(self) -> str:
        return self.provider.id


# --------------------------------------------------------------------------------------
# Similarity scorers
# --------------------------------------------------------------------------------------


class SimilarityScorer(Protocol):
    def score(self, query: str, candidate: str) -> float: ...


class TokenOverlapScorer:
    """
    Word overlap: each query word found verbatim in the candidate counts 1.0,
    each other word that is a substring of (or contains) a candidate word
    counts `partial_weight`. The sum is divided by the longer word count.
    """

    def __init__(
        self,
        *,
        min_word_length: int = PROVIDER_MIN_WORD_LENGTH,
        partial_min_length: int = PROVIDER_PARTIAL_MIN_LENGTH,
        partial_weight: float = PROVIDER_PARTIAL_WEIGHT,
    ) -> None:
        self.min_word_length = min_word_length
        self.partial_min_length = partial_min_length
        self.partial_weight = partial_weight

    def _words(self, text: str) -> list[str]:
        return [w for w in normalise_provider_name(text).split()
                if len(w) >= self.min_word_length]

    def score(self, query: str, candidate: str) -> float:
        query_words = self._words(query)
        candidate_words = self._words(candidate)
        if not query_words or not candidate_words:
            return 0.0
        candidate_set = set(candidate_words)
        exact = 0
        partial = 0
        for word in query_words:
            if word in candidate_set:
                exact += 1
                continue
            if len(word) < self.partial_min_length:
                continue
            if any(len(other) >= self.partial_min_length and (word in other or other in word)
                   for other in candidate_words):
                partial += 1
        total = max(len(query_words), len(candidate_words))
        return min(1.0, (exact + partial * self.partial_weight) / total)


class SequenceRatioScorer:
    """difflib ratio over normalised names."""

    def score(self, query: str, candidate: str) -> float:
        a = normalise_provider_name(query)
        b = normalise_provider_name(candidate)
        if not a or not b:
            return 0.0
        return SequenceMatcher(None, a, b).ratio()


# --------------------------------------------------------------------------------------
# Resolver
# --------------------------------------------------------------------------------------


class ProviderResolver:
    def __init__(
        self,
        scorer: Optional[SimilarityScorer] = None,
        *,
        threshold: float = PROVIDER_FUZZY_THRESHOLD,
    ) -> None:
        self.scorer = scorer or TokenOverlapScorer()
        self.threshold = float(threshold)

    @staticmethod
    def _pick(
        scored: list[tuple[float, ProviderCandidate]],
        counts: Mapping[str, int],
    ) -> tuple[float, ProviderCandidate]:
        return min(scored, key=lambda item: (-item[0], -counts.get(item[1].id, 0), item[1].id))

    def resolve(
        self,
        name: Optional[str],
        tax_id: Optional[str],
        providers: Iterable[ProviderCandidate],
        *,
        document_counts: Optional[Mapping[str, int]] = None,
        tenant_tax_id: Optional[str] = None,
    ) -> Optional[ProviderMatch]:
        active = [p for p in providers if p.active]
        if not active:
            return None
        counts = document_counts or {}

        wanted_tax_id = digits_only(tax_id)
        if wanted_tax_id and wanted_tax_id == digits_only(tenant_tax_id):
            logger.debug("Ignoring tax id %s: it belongs to the tenant", wanted_tax_id)
            wanted_tax_id = ""

        if wanted_tax_id:
            hits = [(1.0, p) for p in active if digits_only(p.tax_id) == wanted_tax_id]
            if hits:
                _, provider = self._pick(hits, counts)
                return ProviderMatch(provider, MatchMethod.TAX_ID, 1.0)

        key = _exact_key(name)
        if not key:
            return None

        hits = [(1.0, p) for p in active if _exact_key(p.legal_name) == key]
        if hits:
            _, provider = self._pick(hits, counts)
            backfill = wanted_tax_id if wanted_tax_id and not digits_only(provider.tax_id) else None
            return ProviderMatch(provider, MatchMethod.LEGAL_NAME, 1.0, backfill_tax_id=backfill)

        hits = [(1.0, p) for p in active if any(_exact_key(a) == key for a in p.aliases)]
        if hits:
            _, provider = self._pick(hits, counts)
            return ProviderMatch(provider, MatchMethod.ALIAS, 1.0)

        scored: list[tuple[float, ProviderCandidate]] = []
        for provider in active:
            best = max((self.scorer.score(name or "", n) for n in provider.names() if n),
                       default=0.0)
            if best >= self.threshold:
                scored.append((best, provider))
        if not scored:
            logger.debug("No provider match for %r (threshold %.2f)", name, self.threshold)
            return None
        score, provider = self._pick(scored, counts)
        return ProviderMatch(provider, MatchMethod.FUZZY, score)


__all__ = [
    "MatchMethod",
    "digits_only",
    "normalise_provider_name",
    "ProviderCandidate",
    "ProviderMatch",
    "SimilarityScorer",
    "TokenOverlapScorer",
    "SequenceRatioScorer",
    "ProviderResolver",
]
