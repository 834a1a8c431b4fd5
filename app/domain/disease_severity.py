"""
Disease Severity Engine
=======================
Bounded severity score per disease and the feedback-driven transitions
that move it.

The score (0-10) is the authoritative state. Status is derived:

* ``resolved``  ⇔ score == 0
* ``active``    when freshly reported, when a ``worse``/``same`` report
  leaves the score at 7 or more, or when a resolved disease gets worse
* ``treating``  after the first ``better`` report on an active disease

Every transition appends a :class:`FeedbackEntry`; entries are never edited.

Severity tiers map a score to treatment intensity for plan generation:

=========  ================  ==============================  ===========
score      tier              treatment days (first 4 days)   per day
=========  ================  ==============================  ===========
0          resolved          none                            0
1-2        almost_resolved   none (monitoring only)          0
3-4        improving         day 0                           1
5-6        moderate          days 0, 2                       1
7-8        severe            days 0, 1, 2                    1
9-10       critical          days 0, 1, 2, 3                 2
=========  ================  ==============================  ===========
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.domain.care_plan import DiseaseRecord, FeedbackEntry
from app.domain.exceptions import ValidationError
from app.enums.care import DiseaseStatus, FeedbackStatus, SeverityHint, SeverityTier

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 10
ACTIVE_THRESHOLD = 7
WORSE_STEP = 2
BETTER_STEP = 1

INITIAL_SCORES: dict[SeverityHint, int] = {
    SeverityHint.MILD: 3,
    SeverityHint.MODERATE: 5,
    SeverityHint.SEVERE: 7,
}
DEFAULT_INITIAL_SCORE = INITIAL_SCORES[SeverityHint.MODERATE]


@dataclass(frozen=True)
class TierPolicy:
    """Treatment intensity for one severity tier."""

    tier: SeverityTier
    treatment_days: tuple[int, ...]
    applications_per_day: int
    window: int
    guidance: str

    @property
    def requires_treatment(self) -> bool:
        return bool(self.treatment_days)


TIER_POLICIES: dict[SeverityTier, TierPolicy] = {
    SeverityTier.RESOLVED: TierPolicy(
        tier=SeverityTier.RESOLVED,
        treatment_days=(),
        applications_per_day=0,
        window=0,
        guidance="Disease resolved. No treatment actions; routine care only.",
    ),
    SeverityTier.ALMOST_RESOLVED: TierPolicy(
        tier=SeverityTier.ALMOST_RESOLVED,
        treatment_days=(),
        applications_per_day=0,
        window=0,
        guidance=(
            "Almost resolved. Do NOT schedule any treatment or spraying. "
            "Schedule only 'check' actions to watch for recurrence."
        ),
    ),
    SeverityTier.IMPROVING: TierPolicy(
        tier=SeverityTier.IMPROVING,
        treatment_days=(0,),
        applications_per_day=1,
        window=4,
        guidance=(
            "Improving. Schedule exactly 1 'protect' treatment action on day 1, "
            "then monitoring checks."
        ),
    ),
    SeverityTier.MODERATE: TierPolicy(
        tier=SeverityTier.MODERATE,
        treatment_days=(0, 2),
        applications_per_day=1,
        window=4,
        guidance=(
            "Moderate. Schedule 'protect' treatment actions on days 1 and 3 "
            "(2 of the first 4 days), once per day."
        ),
    ),
    SeverityTier.SEVERE: TierPolicy(
        tier=SeverityTier.SEVERE,
        treatment_days=(0, 1, 2),
        applications_per_day=1,
        window=4,
        guidance=(
            "Severe. Schedule 'protect' treatment actions on days 1, 2 and 3 "
            "(3 of the first 4 days), once per day."
        ),
    ),
    SeverityTier.CRITICAL: TierPolicy(
        tier=SeverityTier.CRITICAL,
        treatment_days=(0, 1, 2, 3),
        applications_per_day=2,
        window=4,
        guidance=(
            "Critical. Schedule 'protect' treatment actions on ALL of days 1-4, "
            "TWICE per day (morning and late afternoon)."
        ),
    ),
}


@dataclass(frozen=True)
class FeedbackOutcome:
    """Result of applying one feedback report."""

    disease: DiseaseRecord
    previous_score: int
    previous_status: DiseaseStatus
    should_regenerate_plan: bool


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(score)))


def initial_score(hint: SeverityHint | str | None) -> int:
    if hint is None or hint == "":
        return DEFAULT_INITIAL_SCORE
    try:
        return INITIAL_SCORES[SeverityHint(hint)]
    except ValueError as exc:
        raise ValidationError(f"Unknown severity hint: {hint!r}") from exc


def status_for_new_score(score: int) -> DiseaseStatus:
    return DiseaseStatus.RESOLVED if score <= 0 else DiseaseStatus.ACTIVE


def tier_for_score(score: int) -> SeverityTier:
    score = clamp_score(score)
    if score == 0:
        return SeverityTier.RESOLVED
    if score <= 2:
        return SeverityTier.ALMOST_RESOLVED
    if score <= 4:
        return SeverityTier.IMPROVING
    if score <= 6:
        return SeverityTier.MODERATE
    if score <= 8:
        return SeverityTier.SEVERE
    return SeverityTier.CRITICAL


def policy_for_score(score: int) -> TierPolicy:
    return TIER_POLICIES[tier_for_score(score)]


def _resolve(disease: DiseaseRecord) -> None:
    disease.severity_score = 0
    disease.status = DiseaseStatus.RESOLVED
    disease.selected_treatments = None


def apply_feedback(
    disease: DiseaseRecord,
    status: FeedbackStatus | str,
    *,
    now: datetime,
    notes: str = "",
) -> FeedbackOutcome:
    """
    Apply a feedback report to *disease* in place.

    Returns a :class:`FeedbackOutcome` whose ``should_regenerate_plan`` is
    true exactly when this report moved the disease into ``resolved``.
    """
    try:
        feedback = FeedbackStatus(status)
    except ValueError as exc:
        raise ValidationError(f"Unknown feedback status: {status!r}") from exc

    previous_score = disease.severity_score
    previous_status = disease.status
    score = clamp_score(previous_score)

    if feedback is FeedbackStatus.RESOLVED:
        _resolve(disease)
    elif feedback is FeedbackStatus.BETTER:
        score = max(MIN_SCORE, score - BETTER_STEP)
        if score <= 0:
            _resolve(disease)
        else:
            disease.severity_score = score
            if previous_status is DiseaseStatus.ACTIVE:
                disease.status = DiseaseStatus.TREATING
    elif feedback is FeedbackStatus.WORSE:
        score = min(MAX_SCORE, score + WORSE_STEP)
        disease.severity_score = score
        # a resolved disease that gets worse is reopened so score > 0 never reads as resolved
        if score >= ACTIVE_THRESHOLD or previous_status is DiseaseStatus.RESOLVED:
            disease.status = DiseaseStatus.ACTIVE
    else:
        disease.severity_score = score
        if score >= ACTIVE_THRESHOLD and previous_status is DiseaseStatus.TREATING:
            disease.status = DiseaseStatus.ACTIVE

    disease.feedback.append(FeedbackEntry(status=feedback, created_at=now, notes=notes or ""))

    became_resolved = (
        disease.status is DiseaseStatus.RESOLVED and previous_status is not DiseaseStatus.RESOLVED
    )
    logger.debug(
        "Disease %s feedback=%s score %s->%s status %s->%s",
        disease.id,
        feedback,
        previous_score,
        disease.severity_score,
        previous_status,
        disease.status,
    )
    return FeedbackOutcome(
        disease=disease,
        previous_score=previous_score,
        previous_status=previous_status,
        should_regenerate_plan=became_resolved,
    )
