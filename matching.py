"""
Cross-catalog title matching.

Scores scraped search results against an AniList title using normalized
text, season number, release year and media type, and picks the best one.
Candidates and targets are dicts with "title" and optional "year"/"type".
"""

import logging
import re
from dataclasses import dataclass

log = logging.getLogger("yorumi.matching")

TITLE_MATCH = 10
SEASON_MATCH = 10
SEASON_MISMATCH_PENALTY = -20
YEAR_MATCH = 5
YEAR_MISMATCH_PENALTY = -10
TYPE_MATCH = 3

MIN_MATCH_SCORE = 10

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_SEASON_RE = re.compile(r"season\s*(\d+)|(\d+)(?:st|nd|rd|th)\s*season", re.I)


@dataclass
class MatchCandidate:
    candidate: dict
    target_season: int
    candidate_season: int
    score: int
    title_match: bool


def normalize_title(title: str) -> str:
    return _NON_ALNUM_RE.sub("", (title or "").lower())


def season_number(title: str) -> int:
    """'Season 2' / '2nd Season' -> 2; no marker means season 1."""
    match = _SEASON_RE.search(title or "")
    if not match:
        return 1
    return int(match.group(1) or match.group(2))


def base_title(title: str) -> str:
    """Normalized title without its ':' subtitle and season marker."""
    head = (title or "").split(":", 1)[0]
    return normalize_title(_SEASON_RE.sub("", head))


def _contains_either(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


def _year(value) -> int | None:
    try:
        return int(str(value)[:4])
    except (TypeError, ValueError):
        return None


def titles_overlap(candidate_title: str, target_title: str) -> bool:
    if _contains_either(normalize_title(candidate_title), normalize_title(target_title)):
        return True
    return _contains_either(base_title(candidate_title), base_title(target_title))


def evaluate(candidate: dict, target: dict) -> MatchCandidate:
    can_title = candidate.get("title") or ""
    tgt_title = target.get("title") or ""
    score = 0

    title_match = titles_overlap(can_title, tgt_title)
    if title_match:
        score += TITLE_MATCH

    can_year = _year(candidate.get("year"))
    tgt_year = _year(target.get("year"))
    year_diff = abs(can_year - tgt_year) if can_year is not None and tgt_year is not None else None

    target_season = season_number(tgt_title)
    candidate_season = season_number(can_title)
    if candidate_season == target_season:
        score += SEASON_MATCH
    elif (
        target_season > 1
        and candidate_season == 1
        and "season" not in can_title.lower()
        and not (year_diff is not None and year_diff <= 1)
    ):
        # An unmarked title from another year is most likely the first season.
        score += SEASON_MISMATCH_PENALTY

    if year_diff is not None:
        if year_diff <= 1:
            score += YEAR_MATCH
        elif year_diff > 2:
            score += YEAR_MISMATCH_PENALTY

    can_type = candidate.get("type")
    tgt_type = target.get("type")
    if can_type and tgt_type and str(can_type).lower() == str(tgt_type).lower():
        score += TYPE_MATCH

    return MatchCandidate(candidate, target_season, candidate_season, score, title_match)


def score_candidate(candidate: dict, target: dict) -> int:
    return evaluate(candidate, target).score


def rank_candidates(target: dict, candidates: list[dict]) -> list[MatchCandidate]:
    """Best first; equal scores keep their input order."""
    scored = [evaluate(c, target) for c in candidates]
    return sorted(scored, key=lambda m: -m.score)


def best_match(target: dict, candidates: list[dict], min_score: int = MIN_MATCH_SCORE) -> dict | None:
    """The highest scoring usable candidate, or None.

    Usable means the titles overlap and the score reaches ``min_score``.
    """
    ranked = rank_candidates(target, candidates)
    for match in ranked:
        if match.title_match and match.score >= min_score:
            return match.candidate
    if ranked:
        top = ranked[0]
        log.warning(
            f"Ambiguous match for '{target.get('title')}': best was "
            f"'{top.candidate.get('title')}' with score {top.score}"
        )
    else:
        log.warning(f"Ambiguous match for '{target.get('title')}': no candidates")
    return None
