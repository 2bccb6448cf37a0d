"""
Identity matching against extracted page content.

Pure and synchronous: given a PortalContent snapshot and a claimed identity,
decide whether the name and the discriminator (membership number or email)
are both evidenced on the page. Used identically for members, promoters and
sellers.

Name matching is tolerant:
    1. full name as a substring of the text or markup;
    2. otherwise first and last significant token (length > 1) both present in
       the text, with their first occurrences less than
       NAME_PROXIMITY_THRESHOLD characters apart (covers middle initials and
       suffixes);
    3. a single significant token longer than 2 characters as a substring.

Discriminators are matched exactly (case-insensitive substring). Matching is
case-insensitive throughout with no accent folding.
"""
from __future__ import annotations

from typing import Optional

from shared.models.domain import MatchResult, PortalContent
from shared.models.enums import DiscriminatorType
from shared.utils.logging import get_logger

logger = get_logger(__name__)

NAME_PROXIMITY_THRESHOLD = 100
CO_LOCATION_THRESHOLD = 200


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def significant_tokens(name: str) -> list[str]:
    return [part for part in _norm(name).split() if len(part) > 1]


def match_name(name: Optional[str], text: str, markup: str = "") -> bool:
    """Return True if the claimed name is evidenced in text or markup."""
    claimed = _norm(name)
    if not claimed:
        return False
    text = (text or "").lower()
    markup = (markup or "").lower()

    if claimed in text or claimed in markup:
        return True

    parts = significant_tokens(claimed)
    if len(parts) >= 2:
        first_idx = text.find(parts[0])
        last_idx = text.find(parts[-1])
        if first_idx != -1 and last_idx != -1:
            return abs(first_idx - last_idx) < NAME_PROXIMITY_THRESHOLD
        return False
    if len(parts) == 1 and len(parts[0]) > 2:
        return parts[0] in text or parts[0] in markup
    return False


def match_identifier(value: Optional[str], text: str, markup: str = "") -> bool:
    """Exact, case-insensitive substring match for a unique identifier."""
    claimed = _norm(value)
    if not claimed:
        return False
    return claimed in (text or "").lower() or claimed in (markup or "").lower()


def found_together(name: Optional[str], identifier: Optional[str], text: str, markup: str = "") -> bool:
    """
    Diagnostic: whether the full name and the identifier sit within
    CO_LOCATION_THRESHOLD characters of each other. Never gates a match.
    """
    claimed_name = _norm(name)
    claimed_id = _norm(identifier)
    if not claimed_name or not claimed_id:
        return False
    for haystack in ((text or "").lower(), (markup or "").lower()):
        name_idx = haystack.find(claimed_name)
        id_idx = haystack.find(claimed_id)
        if name_idx != -1 and id_idx != -1:
            return abs(name_idx - id_idx) < CO_LOCATION_THRESHOLD
    return False


def match_subject(
    content: PortalContent,
    name: Optional[str],
    identifier: Optional[str],
    discriminator_type: DiscriminatorType = DiscriminatorType.MEMBERSHIP_NUMBER,
) -> MatchResult:
    """Compare one claimed identity against a page snapshot. Never raises."""
    try:
        name_ok = match_name(name, content.text, content.markup)
        id_ok = match_identifier(identifier, content.text, content.markup)
        together: Optional[bool] = None
        if name_ok and id_ok:
            together = found_together(name, identifier, content.text, content.markup)
            if not together:
                logger.debug(
                    "match_not_co_located",
                    discriminator=discriminator_type.value,
                    url=content.url,
                )
        found = name_ok and id_ok
        return MatchResult(
            name_match=name_ok,
            identifier_match=id_ok,
            discriminator_type=discriminator_type,
            matched_name=name if found else None,
            matched_identifier=identifier if found else None,
            found_together=together,
        )
    except Exception as exc:
        logger.exception("match_subject_error", error=str(exc))
        return MatchResult(
            name_match=False,
            identifier_match=False,
            discriminator_type=discriminator_type,
            error=str(exc),
        )
