"""Type classifier: infer which message type best explains a blob.

Every usable candidate type is decoded speculatively and scored from the
decoded tree. Scoring is a pure function of the tree and the weights:

    score = 1.0
            - unknown_field_penalty * unknown / total
            - wire_mismatch_penalty * mismatched / total
            - invalid_value_penalty * invalid / total
            + clean_nested_reward   * clean_nested / total

where ``total`` counts every decoded value (repeated items individually) at
every depth. Ranking uses the raw score, then the number of decoded known
fields (the more specific type wins), then declaration order. Confidence is
the score clamped to [0, 1].
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .decoder import decode_message
from .descriptors import DescriptorEntry, MessageType
from .values import DecodedValue, EnumValue, MapValue, Message, Scalar, Unknown, UnknownReason
from .wire import RawRecord

logger = logging.getLogger(__name__)

DEFAULT_UNKNOWN_FIELD_PENALTY = 1.0
DEFAULT_WIRE_MISMATCH_PENALTY = 1.0
DEFAULT_INVALID_VALUE_PENALTY = 0.5
DEFAULT_CLEAN_NESTED_REWARD = 0.1
DEFAULT_MIN_CONFIDENCE = 0.5


class ScoringWeights(BaseModel):
    """Tunable weights for candidate scoring."""
    unknown_field_penalty: float = Field(DEFAULT_UNKNOWN_FIELD_PENALTY, ge=0)
    wire_mismatch_penalty: float = Field(DEFAULT_WIRE_MISMATCH_PENALTY, ge=0)
    invalid_value_penalty: float = Field(DEFAULT_INVALID_VALUE_PENALTY, ge=0)
    clean_nested_reward: float = Field(DEFAULT_CLEAN_NESTED_REWARD, ge=0)
    min_confidence: float = Field(DEFAULT_MIN_CONFIDENCE, ge=0, le=1)

    model_config = ConfigDict(frozen=True, extra="forbid")


@dataclass
class DecodeStats:
    """Counts gathered from one decoded tree."""
    total: int = 0
    known: int = 0
    unknown: int = 0
    mismatched: int = 0
    invalid: int = 0
    clean_nested: int = 0


@dataclass(frozen=True)
class CandidateScore:
    type_name: str
    score: float
    stats: DecodeStats
    decoded: Message


@dataclass(frozen=True)
class ClassificationResult:
    """Auto-detected type. Transient: never cached across blobs."""
    type_name: str
    confidence: float
    decoded: Message


def _collect(value: DecodedValue, stats: DecodeStats) -> bool:
    """Count one value into ``stats``; returns True if its subtree is clean."""
    stats.total += 1
    if isinstance(value, Unknown):
        if value.reason == UnknownReason.UNKNOWN_FIELD:
            stats.unknown += 1
        else:
            stats.mismatched += 1
        return False
    stats.known += 1
    if isinstance(value, Scalar):
        if not value.valid:
            stats.invalid += 1
        return value.valid
    if isinstance(value, EnumValue):
        if value.name is None:
            stats.invalid += 1
            return False
        stats.clean_nested += 1
        return True
    if isinstance(value, MapValue):
        clean = True
        for key, item in value.entries:
            clean = _collect(key, stats) and clean
            clean = _collect(item, stats) and clean
        return clean
    clean = _collect_message(value, stats)
    if clean and value.fields:
        stats.clean_nested += 1
    return clean


def _collect_message(message: Message, stats: DecodeStats) -> bool:
    clean = True
    for _, value in message.fields:
        items = value if isinstance(value, tuple) else (value,)
        for item in items:
            clean = _collect(item, stats) and clean
    return clean


def decode_stats(message: Message) -> DecodeStats:
    """Walk a decoded top-level message and count what went right and wrong."""
    stats = DecodeStats()
    _collect_message(message, stats)
    return stats


def score_stats(stats: DecodeStats, weights: ScoringWeights) -> float:
    """Score from counts; an empty tree scores 1.0."""
    if stats.total == 0:
        return 1.0
    total = float(stats.total)
    return (
        1.0
        - weights.unknown_field_penalty * stats.unknown / total
        - weights.wire_mismatch_penalty * stats.mismatched / total
        - weights.invalid_value_penalty * stats.invalid / total
        + weights.clean_nested_reward * stats.clean_nested / total
    )


def rank_candidates(records: List[RawRecord], entry: DescriptorEntry,
                    weights: Optional[ScoringWeights] = None,
                    candidates: Optional[Sequence[str]] = None) -> List[CandidateScore]:
    """Decode ``records`` as every usable candidate and rank best first.

    Args:
        records: Scanned records of the blob
        entry: Descriptor entry providing candidate types
        weights: Scoring weights (defaults if omitted)
        candidates: Restrict to these type names (defaults to every listed type)
    """
    weights = weights or ScoringWeights()
    names = list(candidates) if candidates is not None else entry.type_names()
    scored = []
    for order, name in enumerate(names):
        if not entry.is_usable(name):
            continue
        message_type: Optional[MessageType] = entry.find_message(name)
        if message_type is None:
            continue
        decoded = decode_message(records, message_type, entry)
        stats = decode_stats(decoded)
        score = score_stats(stats, weights)
        logger.debug("candidate %s: score=%.4f stats=%s", name, score, stats)
        scored.append((score, stats.known, -order, CandidateScore(name, score, stats, decoded)))
    scored.sort(key=lambda item: item[:3], reverse=True)
    return [item[3] for item in scored]


def classify(records: List[RawRecord], entry: DescriptorEntry,
             weights: Optional[ScoringWeights] = None) -> Optional[ClassificationResult]:
    """Pick the most plausible type for a blob, or None.

    Returns None when the blob has no records (nothing discriminates the
    candidates) or when no candidate clears ``weights.min_confidence``.
    """
    weights = weights or ScoringWeights()
    if not records:
        return None
    ranked = rank_candidates(records, entry, weights)
    if not ranked:
        return None
    best = ranked[0]
    confidence = min(1.0, max(0.0, best.score))
    if confidence < weights.min_confidence or best.stats.known == 0:
        logger.debug("no candidate cleared the floor (best %s at %.4f)", best.type_name, confidence)
        return None
    return ClassificationResult(type_name=best.type_name, confidence=confidence, decoded=best.decoded)
