"""
Tiered scoring for ranked customer search.

Each candidate earns points from three tiers. Exact matches (tier 1) and
strong partial matches (tier 2) are fixed awards; fuzzy signals (tier 3) are
individually capped so that their sum can never reach the lowest tier-1
award, no matter how many weak signals agree.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from rapidfuzz import fuzz, utils
from rapidfuzz.distance import JaroWinkler

from .normalize import normalize_email, phone_digits

# Tier 1: exact matches
EXACT_FULL_NAME = 15.0
SWAPPED_FULL_NAME = 14.0
EXACT_EMAIL = 13.0
EXACT_PHONE = 12.0
SECONDARY_EMAIL = 11.0
EXACT_SINGLE_TOKEN = 10.0

# Tier 2: strong partials
BOTH_NAME_PREFIXES = 7.0
SINGLE_TOKEN_PREFIX = 5.0
PHONE_SUFFIX = 5.0

# Tier 3: fuzzy caps (sum 5.5 stays below tier 1)
NAME_SIMILARITY_CAP = 3.0
EMAIL_SIMILARITY_CAP = 1.0
COMPANY_SIMILARITY_CAP = 1.0
TEXT_RANK_CAP = 0.5

PHONE_MATCH_DIGITS = 10
MIN_PREFIX_LENGTH = 2

SearchType = Literal["email", "phone", "name"]

_PHONE_QUERY_REGEX = re.compile(r"^\+?[\d\s\-().]{7,}$")


def fold_text(value: object | None) -> str:
    """Accent-fold, lower-case and reduce to alphanumeric tokens."""

    if value is None:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(utils.default_process(text).split())


@dataclass(frozen=True)
class SearchQuery:
    raw: str
    text: str
    tokens: tuple[str, ...]
    search_type: SearchType
    email: str | None = None
    digits: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.email and not self.digits


def analyze_query(raw: str | None) -> SearchQuery:
    """Classify a free-text query as an email, phone or name search."""

    stripped = (raw or "").strip()
    text = fold_text(stripped)
    tokens = tuple(text.split())
    if "@" in stripped:
        return SearchQuery(stripped, text, tokens, "email", email=normalize_email(stripped))
    if _PHONE_QUERY_REGEX.match(stripped):
        return SearchQuery(stripped, text, tokens, "phone", digits=phone_digits(stripped))
    return SearchQuery(stripped, text, tokens, "name")


@dataclass
class ScoreBreakdown:
    """Per-component points awarded to one candidate."""

    components: dict[str, float] = field(default_factory=dict)

    def add(self, name: str, points: float) -> None:
        if points > 0:
            self.components[name] = round(points, 4)

    @property
    def total(self) -> float:
        return round(sum(self.components.values()), 4)

    @property
    def reasons(self) -> list[str]:
        return [name for name, _ in sorted(self.components.items(), key=lambda item: (-item[1], item[0]))]


def _last_digits(value: object | None) -> str:
    return phone_digits(value)[-PHONE_MATCH_DIGITS:]


def _name_tiers(query: SearchQuery, first: str, last: str, breakdown: ScoreBreakdown) -> None:
    tokens = query.tokens
    if len(tokens) >= 2 and first and last:
        if query.text == f"{first} {last}":
            breakdown.add("exact_full_name", EXACT_FULL_NAME)
            return
        if query.text == f"{last} {first}":
            breakdown.add("swapped_full_name", SWAPPED_FULL_NAME)
            return
        if len(tokens) == 2:
            head, tail = tokens
            forward = first.startswith(head) and last.startswith(tail)
            backward = last.startswith(head) and first.startswith(tail)
            if forward or backward:
                breakdown.add("name_prefixes", BOTH_NAME_PREFIXES)
        return

    if len(tokens) == 1:
        token = tokens[0]
        name_tokens = set(first.split()) | set(last.split())
        if token in name_tokens:
            breakdown.add("exact_name_token", EXACT_SINGLE_TOKEN)
        elif len(token) >= MIN_PREFIX_LENGTH and any(part.startswith(token) for part in name_tokens):
            breakdown.add("name_token_prefix", SINGLE_TOKEN_PREFIX)


def _name_similarity(query: SearchQuery, full_name: str) -> float:
    """GREATEST() over several measures so agreeing measures are not double-counted."""

    if not query.text:
        return 0.0
    measures = [0.0]
    if full_name:
        measures.extend(
            [
                fuzz.ratio(query.text, full_name) / 100.0,
                fuzz.token_sort_ratio(query.text, full_name) / 100.0,
                JaroWinkler.normalized_similarity(query.text.replace(" ", ""), full_name.replace(" ", "")),
            ]
        )
        if len(query.tokens) == 1:
            measures.append(
                max(JaroWinkler.normalized_similarity(query.text, part) for part in full_name.split())
            )
    return max(0.0, min(1.0, max(measures)))


def _text_rank(query: SearchQuery, search_text: str | None) -> float:
    if not query.tokens or not search_text:
        return 0.0
    haystack = set(search_text.split())
    hits = sum(1 for token in query.tokens if token in haystack)
    return hits / len(query.tokens)


def score_candidate(query: SearchQuery, candidate: Any) -> ScoreBreakdown:
    """
    Score one candidate search document against an analyzed query.

    ``candidate`` needs the attributes of ``CustomerSearchDocument``.
    """

    breakdown = ScoreBreakdown()
    first = fold_text(candidate.first_name)
    last = fold_text(candidate.last_name)
    full_name = " ".join(part for part in (first, last) if part)
    emails = [normalize_email(value) for value in (candidate.all_emails or [])]
    emails = [value for value in emails if value]

    if query.search_type == "email" and query.email:
        if query.email == normalize_email(candidate.primary_email):
            breakdown.add("exact_email", EXACT_EMAIL)
        elif query.email in emails:
            breakdown.add("secondary_email", SECONDARY_EMAIL)
        if emails:
            best = max(fuzz.ratio(query.email, value) / 100.0 for value in emails)
            breakdown.add("email_similarity", min(EMAIL_SIMILARITY_CAP, best * EMAIL_SIMILARITY_CAP))
        return breakdown

    if query.search_type == "phone":
        wanted = _last_digits(query.digits)
        phones = [candidate.primary_phone] + list(candidate.all_phones or [])
        stored = [_last_digits(phone) for phone in phones if phone]
        if not wanted:
            return breakdown
        if wanted in stored:
            breakdown.add("exact_phone", EXACT_PHONE)
        elif any(value.endswith(wanted) for value in stored):
            # A partial number such as a local 7-digit dial string
            breakdown.add("phone_suffix", PHONE_SUFFIX)
        return breakdown

    company = fold_text(candidate.company)
    _name_tiers(query, first, last, breakdown)
    breakdown.add("name_similarity", NAME_SIMILARITY_CAP * _name_similarity(query, full_name))
    if emails and query.text:
        compact = query.text.replace(" ", "")
        best = max(fuzz.partial_ratio(compact, value.split("@", 1)[0]) / 100.0 for value in emails)
        breakdown.add("email_similarity", EMAIL_SIMILARITY_CAP * best)
    if company and query.text:
        similarity = fuzz.token_sort_ratio(query.text, company) / 100.0
        breakdown.add("company_similarity", COMPANY_SIMILARITY_CAP * similarity)
    breakdown.add("text_rank", TEXT_RANK_CAP * _text_rank(query, candidate.search_text))
    return breakdown


def _timestamp(value: datetime | None) -> float:
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def rank_key(score: float, is_vip: bool, updated_at: datetime | None, customer_id: int) -> tuple:
    """Sort key: score desc, VIP desc, last-updated desc, id desc."""

    return (-score, -int(bool(is_vip)), -_timestamp(updated_at), -customer_id)


__all__ = [
    "ScoreBreakdown",
    "SearchQuery",
    "analyze_query",
    "fold_text",
    "rank_key",
    "score_candidate",
]
