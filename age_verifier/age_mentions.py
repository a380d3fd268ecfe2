"""
Self-reported age analysis.

Finds ages users mention in their own submissions ("[18m]", "(21)", "m25")
and projects the most recent consistent mentions to a current-age estimate.
"""

import re
import math
import time
import logging
import statistics
from dataclasses import dataclass
from typing import List, Optional, Iterable, Dict, Any, Tuple, Set

from age_verifier.models import AgeEstimate


SECONDS_PER_YEAR = 365.25 * 24 * 60 * 60

# Posted ages are written inside brackets: (18), [18m], {m18}, (f21)
BRACKET_PATTERNS = (
    re.compile(r'[(\[{](\d{2})[mMfF]?[)\]}]'),
    re.compile(r'[(\[{][mMfF](\d{2})[)\]}]'),
)

# Possible ages appear bare: 18m, m18, 18
STANDALONE_PATTERNS = (
    re.compile(r'\b(\d{2})[mMfF]\b'),
    re.compile(r'\b[mMfF](\d{2})\b'),
    re.compile(r'\b(\d{2})\b'),
)

CONFIDENCE_HIGH = 'High'
CONFIDENCE_MEDIUM = 'Medium'
CONFIDENCE_LOW = 'Low'
CONFIDENCE_VERY_LOW = 'Very Low'


@dataclass(frozen=True)
class AgeMentions:
    """Ages found in a piece of text, sorted ascending."""

    posted: Tuple[int, ...] = ()
    possible: Tuple[int, ...] = ()


@dataclass(frozen=True)
class AgePoint:
    """An age posted at a given time."""

    timestamp: float
    age: int


@dataclass(frozen=True)
class _Anomaly:
    index: int
    from_age: int
    to_age: int
    years: float
    rate: float


def build_age_search_query(min_age: int = 10, max_age: int = 70) -> str:
    """Search query matching "18", "18m" and "m18" for every age in range."""
    terms = []
    for age in range(min_age, max_age + 1):
        terms.extend((str(age), f'{age}m', f'm{age}'))
    return '|'.join(terms)


def extract_ages_from_text(text: Optional[str], min_age: int = 10, max_age: int = 70) -> AgeMentions:
    """
    Find ages mentioned in text.

    Args:
        text: Post title and/or body
        min_age: Smallest age considered
        max_age: Largest age considered

    Returns:
        AgeMentions with bracketed ages as posted and the rest as possible
    """
    if not text:
        return AgeMentions()

    posted: Set[int] = set()
    possible: Set[int] = set()

    for pattern in BRACKET_PATTERNS:
        for match in pattern.finditer(text):
            age = int(match.group(1))
            if min_age <= age <= max_age:
                posted.add(age)

    for pattern in STANDALONE_PATTERNS:
        for match in pattern.finditer(text):
            age = int(match.group(1))
            if min_age <= age <= max_age and age not in posted:
                possible.add(age)

    return AgeMentions(posted=tuple(sorted(posted)), possible=tuple(sorted(possible)))


def collect_mentions(
    posts: Iterable[Dict[str, Any]],
    min_age: int = 10,
    max_age: int = 70
) -> Tuple[AgeMentions, List[AgePoint]]:
    """
    Aggregate age mentions over a user's submissions.

    Args:
        posts: Submission dicts with title, selftext and created_utc

    Returns:
        (all mentions, data points for each posted age)
    """
    posted: Set[int] = set()
    possible: Set[int] = set()
    points: List[AgePoint] = []
    matched = 0

    for post in posts:
        text = f"{post.get('title') or ''} {post.get('selftext') or ''}"
        found = extract_ages_from_text(text, min_age, max_age)
        if not found.posted and not found.possible:
            continue

        matched += 1
        posted.update(found.posted)
        possible.update(found.possible)

        created_utc = post.get('created_utc')
        if created_utc is None:
            continue
        for age in found.posted:
            points.append(AgePoint(timestamp=float(created_utc), age=age))

    logging.debug(f"Found {matched} posts with age mentions")

    mentions = AgeMentions(
        posted=tuple(sorted(posted)),
        possible=tuple(sorted(possible - posted)),
    )
    return mentions, points


def _find_anomalies(points: List[AgePoint]) -> Tuple[List[_Anomaly], bool]:
    """Flag transitions ageing faster than 2 years/year or backwards faster than 0.5."""
    anomalies = []
    major_jump = False

    for i in range(1, len(points)):
        years = (points[i].timestamp - points[i - 1].timestamp) / SECONDS_PER_YEAR
        age_diff = points[i].age - points[i - 1].age
        if years <= 0:
            continue

        rate = age_diff / years
        if rate > 2 or rate < -0.5:
            anomalies.append(_Anomaly(i, points[i - 1].age, points[i].age, years, rate))
            # More than 5 years in under 2 calendar years
            if abs(age_diff) >= 5 and years < 2:
                major_jump = True
            logging.debug(
                f"Age anomaly: {points[i - 1].age} -> {points[i].age} in {years:.2f} years (rate {rate:.2f})"
            )

    return anomalies, major_jump


def _couples_track(points: List[AgePoint]) -> Optional[List[AgePoint]]:
    """
    Detect an account shared by two people posting alternately.

    Returns:
        The age track with the most recent data, or None if not a couples account
    """
    clusters: List[List[Tuple[int, AgePoint]]] = []
    for idx, point in enumerate(points):
        for cluster in clusters:
            mean = sum(p.age for _, p in cluster) / len(cluster)
            if abs(mean - point.age) <= 4:
                cluster.append((idx, point))
                break
        else:
            clusters.append([(idx, point)])

    if len(clusters) != 2 or len(clusters[0]) < 3 or len(clusters[1]) < 3:
        return None

    first = {idx for idx, _ in clusters[0]}
    switches = sum(
        1 for i in range(len(points) - 1)
        if (i in first) != (i + 1 in first)
    )
    ratio = switches / (len(points) - 1)
    if ratio < 0.4:
        logging.debug(f"Not a couples account: interleave ratio {ratio:.2f}")
        return None

    logging.debug(f"Couples account detected: interleave ratio {ratio:.2f}")
    track1 = sorted((p for _, p in clusters[0]), key=lambda p: p.timestamp)
    track2 = sorted((p for _, p in clusters[1]), key=lambda p: p.timestamp)
    return track1 if track1[-1].timestamp > track2[-1].timestamp else track2


def _round_half(value: float) -> float:
    """Round to the nearest 0.5, halves rounding up."""
    return math.floor(value * 2 + 0.5) / 2


def estimate_current_age(
    points: Iterable[AgePoint],
    now: Optional[float] = None,
    min_age: int = 10,
    max_age: int = 70,
    allow_very_low: bool = True
) -> Optional[AgeEstimate]:
    """
    Project posted ages to a current-age estimate.

    Args:
        points: Posted ages with the time they were posted
        now: Epoch time to project to (defaults to current time)
        min_age: Smallest plausible age
        max_age: Largest plausible age (estimates up to max_age + 10 are kept)
        allow_very_low: Whether to return very-low-confidence estimates

    Returns:
        AgeEstimate, a skipped AgeEstimate when the data looks falsified, or
        None when no consistent estimate can be made
    """
    points = sorted(points, key=lambda p: p.timestamp)
    if not points:
        return None

    now = time.time() if now is None else now
    anomalies, major_jump = _find_anomalies(points)

    couples = False
    if len(points) >= 4 and anomalies:
        track = _couples_track(points)
        if track is not None:
            couples = True
            points = track

    if not couples:
        if major_jump and anomalies[0].index < len(points) / 2:
            first = anomalies[0]
            return AgeEstimate(
                data_points=len(points),
                anomalies_detected=True,
                major_jump=True,
                skipped_reason='major_jump',
                message=(
                    f"Major age jump detected ({first.from_age} → {first.to_age} in "
                    f"{first.years:.1f} years). Unable to estimate current age."
                ),
            )

        if len(points) > 1 and len(anomalies) / (len(points) - 1) > 0.3:
            return AgeEstimate(
                data_points=len(points),
                anomalies_detected=True,
                major_jump=major_jump,
                skipped_reason='too_many_anomalies',
                message=(
                    f"Too many age inconsistencies detected ({len(anomalies)} anomalies in "
                    f"{len(points)} points). Unable to estimate current age."
                ),
            )

        if anomalies and len(anomalies) < len(points) / 2:
            if major_jump and len(anomalies) == 1:
                # Keep the larger side of the jump
                jump = anomalies[0].index
                points = points[:jump] if jump > len(points) / 2 else points[jump:]
            else:
                bad = {a.index for a in anomalies}
                filtered = [p for i, p in enumerate(points) if i not in bad]
                if filtered:
                    points = filtered

    earliest, latest = points[0], points[-1]
    year_span = (latest.timestamp - earliest.timestamp) / SECONDS_PER_YEAR
    years_since_latest = (now - latest.timestamp) / SECONDS_PER_YEAR

    if len(points) == 1:
        estimated = latest.age + years_since_latest
        if years_since_latest >= 1:
            confidence = CONFIDENCE_MEDIUM
        elif years_since_latest >= 0.25:
            confidence = CONFIDENCE_LOW
        else:
            confidence = CONFIDENCE_VERY_LOW
    else:
        rate = (latest.age - earliest.age) / year_span if year_span > 0 else 0

        if any(points[i].age < points[i - 1].age - 1 for i in range(1, len(points))):
            return None

        if year_span < 1 and statistics.pstdev(p.age for p in points) > 2:
            return None

        estimated = latest.age + years_since_latest * rate

        consistency = 0.0
        if len(points) >= 3:
            consistent = 0
            for i in range(1, len(points)):
                years = (points[i].timestamp - points[i - 1].timestamp) / SECONDS_PER_YEAR
                point_rate = (points[i].age - points[i - 1].age) / years if years > 0 else 0
                if 0.7 <= point_rate <= 1.5:
                    consistent += 1
            consistency = consistent / (len(points) - 1)

        if major_jump:
            confidence = CONFIDENCE_LOW
        elif (len(points) >= 10 and year_span >= 2 and 0.6 <= rate <= 1.6
                and consistency >= 0.7 and not anomalies):
            confidence = CONFIDENCE_HIGH
        elif len(points) >= 3 and year_span >= 2 and 0.7 <= rate <= 1.5 and not anomalies:
            confidence = CONFIDENCE_HIGH
        elif year_span >= 1 and 0.6 <= rate <= 1.6:
            confidence = CONFIDENCE_LOW if anomalies else CONFIDENCE_MEDIUM
        elif 0.5 <= rate <= 2.0:
            confidence = CONFIDENCE_LOW
        else:
            confidence = CONFIDENCE_VERY_LOW

        if anomalies and confidence == CONFIDENCE_HIGH:
            confidence = CONFIDENCE_MEDIUM

    if confidence == CONFIDENCE_VERY_LOW and not allow_very_low:
        return None

    estimated = _round_half(estimated)
    if estimated < min_age or estimated > max_age + 10:
        return None

    return AgeEstimate(
        estimated_age=estimated,
        confidence=confidence,
        data_points=len(points),
        year_span=round(year_span, 1),
        anomalies_detected=bool(anomalies),
        couples_account=couples,
        major_jump=major_jump,
    )
