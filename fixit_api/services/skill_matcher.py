from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

DEFAULT_SKILL = "general"

PROFICIENCY_WEIGHTS: dict[str, float] = {
    "beginner": 0.25,
    "intermediate": 0.5,
    "advanced": 0.75,
    "expert": 1.0,
}
DEFAULT_PROFICIENCY = "intermediate"

# Unverified skills count for less than the same skill verified by an admin
UNVERIFIED_FACTOR = 0.8


def normalize_skill(name: str) -> str:
    return " ".join(name.split()).lower()


@dataclass(frozen=True)
class SkillProfile:
    name: str
    proficiency: str = DEFAULT_PROFICIENCY
    verified: bool = False

    @property
    def weight(self) -> float:
        base = PROFICIENCY_WEIGHTS.get(
            self.proficiency.lower(), PROFICIENCY_WEIGHTS[DEFAULT_PROFICIENCY]
        )
        return base if self.verified else base * UNVERIFIED_FACTOR


@dataclass(frozen=True)
class Candidate:
    user_id: str
    name: str
    skills: tuple[SkillProfile, ...] = ()
    rating_average: float = 0.0
    issues_resolved: int = 0


@dataclass(frozen=True)
class HelperCandidate:
    candidate: Candidate
    score: float
    matched_skills: list[str] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.candidate.user_id


def required_skill_set(required_skills: Iterable[str]) -> list[str]:
    """Normalize and deduplicate required skills, falling back to 'general'"""
    seen: set[str] = set()
    ordered: list[str] = []
    for skill in required_skills:
        key = normalize_skill(skill)
        if key and key not in seen:
            ordered.append(key)
            seen.add(key)
    return ordered or [DEFAULT_SKILL]


def score_candidate(required: list[str], candidate: Candidate) -> HelperCandidate:
    best: dict[str, float] = {}
    for skill in candidate.skills:
        key = normalize_skill(skill.name)
        if key in required:
            best[key] = max(best.get(key, 0.0), skill.weight)

    total = sum(best.values()) / len(required)
    score = round(min(1.0, max(0.0, total)), 4)
    matched = [skill for skill in required if skill in best]
    return HelperCandidate(candidate=candidate, score=score, matched_skills=matched)


def rank_helpers(
    required_skills: Iterable[str],
    candidates: Iterable[Candidate],
    exclude_user_id: str | None = None,
) -> list[HelperCandidate]:
    """Rank candidates for an issue by skill overlap.

    - Score is the proficiency/verification weighted share of required
      skills the candidate covers, bounded to [0, 1]
    - Ties go to the higher rating, then more resolved issues, then input order
    - An empty result is valid; widening the pool is the caller's decision
    """
    required = required_skill_set(required_skills)
    excluded = str(exclude_user_id) if exclude_user_id is not None else None

    scored = [
        score_candidate(required, candidate)
        for candidate in candidates
        if excluded is None or str(candidate.user_id) != excluded
    ]
    # sorted() is stable, so equal keys keep their input order
    return sorted(
        scored,
        key=lambda helper: (
            -helper.score,
            -helper.candidate.rating_average,
            -helper.candidate.issues_resolved,
        ),
    )
