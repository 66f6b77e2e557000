"""
Score aggregation and quorum evaluation for governance reviews.

Pure functions — no database access — so the numeric rules can be tested
in isolation:

    voter score    = Σ (weight / 100) * score   over enabled criteria (1–5 scale)
    priority score = mean(voter scores), rounded half-up to ``precision`` decimals
    required votes = max(quorum_min_count, ceil(eligible * quorum_percent / 100))
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from atlas.core.exceptions import ValidationError

SCORE_MIN = 1
SCORE_MAX = 5


def round_half_up(value: float, precision: int = 2) -> float:
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def enabled_criteria(criteria: list[dict]) -> list[dict]:
    return [c for c in (criteria or []) if c.get("enabled", True) is not False]


def validate_scores(scores, criteria: list[dict]) -> dict:
    """Return ``{criterion_id: int}`` for every enabled criterion.

    Scores must be integers 1..5 (integral floats and numeric strings are
    accepted). Keys that are not enabled criteria are dropped.
    """
    if not isinstance(scores, dict):
        raise ValidationError("scores must be an object keyed by criterion id")
    active = enabled_criteria(criteria)
    if not active:
        raise ValidationError("No enabled criteria available for this review")

    cleaned = {}
    missing = []
    for criterion in active:
        cid = criterion["id"]
        if cid not in scores or scores[cid] is None or scores[cid] == "":
            missing.append(cid)
            continue
        raw = scores[cid]
        if isinstance(raw, bool):
            raise ValidationError(f"Score for '{cid}' must be an integer from 1 to 5")
        try:
            number = float(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Score for '{cid}' must be an integer from 1 to 5") from None
        if not math.isfinite(number) or not number.is_integer():
            raise ValidationError(f"Score for '{cid}' must be an integer from 1 to 5")
        number = int(number)
        if number < SCORE_MIN or number > SCORE_MAX:
            raise ValidationError(f"Score for '{cid}' must be an integer from 1 to 5")
        cleaned[cid] = number

    if missing:
        raise ValidationError(
            "Scores are required for every active criterion",
            details={"missing": missing},
        )
    return cleaned


def voter_weighted_score(scores: dict, criteria: list[dict]) -> float | None:
    """Σ (weight/100) * score over enabled criteria the voter scored."""
    total = 0.0
    scored = False
    for criterion in enabled_criteria(criteria):
        value = (scores or {}).get(criterion["id"])
        if value is None:
            continue
        total += (float(criterion.get("weight") or 0) / 100.0) * float(value)
        scored = True
    return total if scored else None


def priority_score(vote_scores: list[dict], criteria: list[dict], precision: int = 2) -> float | None:
    """Mean voter weighted score, or None when nobody has voted."""
    per_voter = [
        s for s in (voter_weighted_score(v, criteria) for v in vote_scores) if s is not None
    ]
    if not per_voter:
        return None
    return round_half_up(sum(per_voter) / len(per_voter), precision)


def required_votes(eligible_count: int, quorum_percent: int, quorum_min_count: int) -> int:
    by_percent = math.ceil(eligible_count * quorum_percent / 100) if eligible_count else 0
    return max(int(quorum_min_count or 0), by_percent)


def score_summary(
    *,
    votes: list,
    criteria: list[dict],
    eligible_count: int,
    policy: dict,
    vote_deadline_at: datetime | None = None,
    precision: int = 2,
    now: datetime | None = None,
) -> dict:
    """Aggregate view of a review: score, participation, quorum and deadline."""
    now = now or datetime.now(UTC)
    vote_count = len(votes)
    needed = required_votes(
        eligible_count,
        int(policy.get("quorum_percent") or 0),
        int(policy.get("quorum_min_count") or 0),
    )
    deadline = vote_deadline_at
    if deadline is not None and deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=UTC)

    return {
        "priority_score": priority_score([v.scores or {} for v in votes], criteria, precision),
        "vote_count": vote_count,
        "eligible_voter_count": eligible_count,
        "participation_pct": round(100 * vote_count / eligible_count) if eligible_count else 0,
        "required_votes": needed,
        "quorum_met": vote_count >= needed,
        "decision_requires_quorum": bool(policy.get("decision_requires_quorum", True)),
        "vote_deadline_at": deadline.isoformat() if deadline else None,
        "deadline_passed": bool(deadline and now > deadline),
        "conflict_declared_count": sum(1 for v in votes if v.conflict_declared),
    }
