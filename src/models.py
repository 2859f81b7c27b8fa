"""
Centralized shared data types for the content intelligence pipeline.

This module is THE single source of truth for all data models used across
ingestion, clustering, image selection, content synthesis and validation.

Hierarchy of types
------------------
- **Enums**: ``SignalSource``, ``TrendDirection``, ``ImageSource``,
  ``ValidationStatus``, ``ContentSource``, ``TopicState``, ``ImageEntityType``
- **Ingestion models**: ``TrendSignal``, ``IngestionResult``
- **Clustering / fatigue models**: ``TopicCluster``, ``FatigueReport``,
  ``ContentRecommendation``
- **Image models**: ``ImageMetadata``, ``ImageCandidate``,
  ``ImageFetchContext``, ``ImageSelectionResult``
- **Synthesis models**: ``AIGeneration``, ``ContentDraft``
- **Validation models**: ``Topic``, ``ValidatedDraft``, ``ValidationResult``,
  ``FailedTopic``, ``BatchSummary``, ``BatchResult``
- **Persistence models**: ``InsertResult``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from src.exceptions import ValidationError
from src.utils import generate_id, parse_timestamp, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class SignalSource(str, Enum):
    """Identifiers of the external trend-signal fetchers."""

    TMDB = "tmdb"
    YOUTUBE = "youtube"
    INTERNAL = "internal"
    NEWS_API = "news_api"


class TrendDirection(str, Enum):
    """Directional classification of a topic cluster."""

    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"
    SPIKING = "spiking"


class ImageSource(str, Enum):
    """Image providers, in descending priority order."""

    TMDB = "tmdb"
    WIKIMEDIA = "wikimedia"
    WIKIPEDIA = "wikipedia"
    UNSPLASH = "unsplash"
    PEXELS = "pexels"
    AI_GENERATED = "ai_generated"


class ValidationStatus(str, Enum):
    """Validation state of an image candidate."""

    VALID = "valid"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


class ContentSource(str, Enum):
    """Provenance of a content draft."""

    AI = "ai"
    FALLBACK = "fallback"


class TopicState(str, Enum):
    """Per-topic state machine of the validation pipeline.

    ``PENDING -> SYNTHESIZING -> VALIDATING -> (ACCEPTED | REJECTED)``
    """

    PENDING = "pending"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """Whether the topic has been resolved."""
        return self in (TopicState.ACCEPTED, TopicState.REJECTED)


class ImageEntityType(str, Enum):
    """What kind of entity an image is being selected for."""

    POST = "post"
    CELEBRITY = "celebrity"
    MOVIE = "movie"
    REVIEW = "review"


# =============================================================================
# INGESTION MODELS
# =============================================================================


@dataclass(frozen=True)
class TrendSignal:
    """One timestamped, source-attributed observation of topic popularity.

    Immutable once created. ``normalized_score`` is the cross-source
    comparable magnitude (0-100); ``raw_score`` is source-native and
    unbounded.
    """

    source: SignalSource
    keyword: str
    raw_score: float
    normalized_score: float
    timestamp: datetime
    localized_keyword: Optional[str] = None
    related_keywords: List[str] = field(default_factory=list)
    velocity: float = 1.0
    category: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    sentiment: Optional[float] = None
    raw_data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_id)

    def __post_init__(self) -> None:
        if not self.keyword or not self.keyword.strip():
            raise ValidationError("TrendSignal.keyword cannot be empty")
        if not 0.0 <= self.normalized_score <= 100.0:
            raise ValidationError(
                f"TrendSignal.normalized_score must be in [0, 100], "
                f"got {self.normalized_score}"
            )
        if self.sentiment is not None and not -1.0 <= self.sentiment <= 1.0:
            raise ValidationError(
                f"TrendSignal.sentiment must be in [-1, 1], got {self.sentiment}"
            )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``trend_signals`` table row."""
        return {
            "id": self.id,
            "source": self.source.value,
            "keyword": self.keyword,
            "keyword_te": self.localized_keyword,
            "related_keywords": list(self.related_keywords),
            "raw_score": self.raw_score,
            "normalized_score": self.normalized_score,
            "velocity": self.velocity,
            "category": self.category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "sentiment": self.sentiment,
            "raw_data": self.raw_data,
            "signal_timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TrendSignal":
        """Build a signal from a ``trend_signals`` table row."""
        timestamp = parse_timestamp(row.get("signal_timestamp"))
        if timestamp is None:
            raise ValidationError(
                f"trend_signals row {row.get('id')} has no signal_timestamp"
            )
        return cls(
            id=str(row["id"]),
            source=SignalSource(row["source"]),
            keyword=row["keyword"],
            localized_keyword=row.get("keyword_te"),
            related_keywords=list(row.get("related_keywords") or []),
            raw_score=float(row.get("raw_score") or 0.0),
            normalized_score=float(row.get("normalized_score") or 0.0),
            velocity=float(row.get("velocity") or 1.0),
            category=row.get("category"),
            entity_type=row.get("entity_type"),
            entity_id=row.get("entity_id"),
            sentiment=row.get("sentiment"),
            raw_data=row.get("raw_data") or {},
            timestamp=timestamp,
        )


@dataclass
class IngestionResult:
    """Outcome of one full ingestion run (the trigger-surface return value)."""

    source_counts: Dict[str, int]
    stored: int
    clusters: int
    run_id: str = field(default_factory=generate_id)
    completed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(self.source_counts)
        result["stored"] = self.stored
        result["clusters"] = self.clusters
        result["run_id"] = self.run_id
        result["completed_at"] = self.completed_at.isoformat()
        return result


# =============================================================================
# CLUSTERING / FATIGUE MODELS
# =============================================================================


@dataclass
class TopicCluster:
    """An aggregation of trend signals sharing a normalized keyword.

    ``cluster_key`` is unique. Saturation fields are owned by the fatigue
    scorer and are never written by a clustering upsert.
    """

    cluster_key: str
    primary_keyword: str
    keywords: List[str]
    avg_score: float
    signal_count: int
    trend_direction: TrendDirection
    category: Optional[str] = None
    signal_ids: List[str] = field(default_factory=list)
    saturation_score: float = 0.0
    is_saturated: bool = False
    times_covered: int = 0
    updated_at: Optional[datetime] = None

    def to_upsert_row(self) -> Dict[str, Any]:
        """Row written by a clustering run (keyed by ``cluster_name``)."""
        return {
            "cluster_name": self.cluster_key,
            "primary_keyword": self.primary_keyword,
            "keywords": list(self.keywords),
            "signal_ids": list(self.signal_ids),
            "total_signals": self.signal_count,
            "avg_score": self.avg_score,
            "trend_direction": self.trend_direction.value,
            "category": self.category,
            "updated_at": (self.updated_at or utc_now()).isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TopicCluster":
        return cls(
            cluster_key=row["cluster_name"],
            primary_keyword=row.get("primary_keyword") or row["cluster_name"],
            keywords=list(row.get("keywords") or []),
            avg_score=float(row.get("avg_score") or 0.0),
            signal_count=int(row.get("total_signals") or 0),
            trend_direction=TrendDirection(row.get("trend_direction") or "stable"),
            category=row.get("category"),
            signal_ids=list(row.get("signal_ids") or []),
            saturation_score=float(row.get("saturation_score") or 0.0),
            is_saturated=bool(row.get("is_saturated") or False),
            times_covered=int(row.get("times_covered") or 0),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass
class FatigueReport:
    """Topic buckets for editorial reporting."""

    saturated: List[str] = field(default_factory=list)
    rising: List[str] = field(default_factory=list)
    underserved: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "saturated": list(self.saturated),
            "rising": list(self.rising),
            "underserved": list(self.underserved),
        }


@dataclass
class ContentRecommendation:
    """A suggested topic to cover next, derived from the fatigue report."""

    topic: str
    reason: str
    priority: str  # "high" | "medium" | "low"
    suggested_format: str
    urgency: str


# =============================================================================
# IMAGE MODELS
# =============================================================================


@dataclass
class ImageMetadata:
    """Whatever a provider could tell us about an image."""

    width: Optional[int] = None
    height: Optional[int] = None
    aspect_ratio: Optional[float] = None
    has_face: Optional[bool] = None
    license: Optional[str] = None
    author: Optional[str] = None
    source_url: Optional[str] = None
    emotion_match: Optional[float] = None

    @property
    def effective_aspect_ratio(self) -> Optional[float]:
        """Reported aspect ratio, or width/height when only dimensions exist."""
        if self.aspect_ratio:
            return self.aspect_ratio
        if self.width and self.height:
            return self.width / self.height
        return None


@dataclass
class ImageCandidate:
    """One image returned by one provider for one selection call.

    ``score`` starts as the provider's provisional base score and is
    recomputed centrally by the image intelligence engine.
    """

    url: str
    source: ImageSource
    score: float
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    validation_status: ValidationStatus = ValidationStatus.VALID


@dataclass
class ImageFetchContext:
    """Describes the entity an image is being selected for."""

    topic: str
    entity_type: ImageEntityType = ImageEntityType.POST
    category: Optional[str] = None
    emotion: Optional[str] = None
    tmdb_id: Optional[int] = None
    wikidata_id: Optional[str] = None
    celebrity_name: Optional[str] = None
    movie_title: Optional[str] = None

    @property
    def prefer_faces(self) -> bool:
        return self.entity_type in (ImageEntityType.CELEBRITY, ImageEntityType.POST)

    @property
    def search_term(self) -> str:
        return self.celebrity_name or self.movie_title or self.topic


@dataclass
class ImageSelectionResult:
    """Result of ``select_best_image``; ``selected_image`` may be ``None``."""

    selected_image: Optional[ImageCandidate]
    candidates: List[ImageCandidate]
    selection_reason: str


# =============================================================================
# SYNTHESIS MODELS
# =============================================================================


@dataclass
class AIGeneration:
    """Raw output of the AI capability.

    ``confidence`` is in [0, 1] when the capability reports one, else
    ``None`` and the synthesizer derives a heuristic score.
    """

    text: str
    confidence: Optional[float] = None
    provider: str = ""

    def __post_init__(self) -> None:
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(
                f"AIGeneration.confidence must be in [0, 1], got {self.confidence}"
            )


@dataclass
class ContentDraft:
    """Output of content synthesis for one topic.

    ``confidence`` and ``source`` are internal-only: callers must check
    both before acceptance, and they are stripped before persistence.
    """

    topic: str
    title: str
    body: str
    tags: List[str]
    slug: str
    confidence: float
    source: ContentSource
    excerpt: str = ""
    category: str = "trending"
    image_url: Optional[str] = None
    image_source: Optional[str] = None
    image_license: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_validated(self) -> "ValidatedDraft":
        """Strip internal-only fields, producing the persistable draft."""
        return ValidatedDraft(
            title=self.title,
            slug=self.slug,
            body=self.body,
            excerpt=self.excerpt,
            category=self.category,
            tags=list(self.tags),
            image_url=self.image_url,
            image_source=self.image_source,
            image_license=self.image_license,
        )


# =============================================================================
# VALIDATION MODELS
# =============================================================================


@dataclass
class Topic:
    """A topic to synthesize content for."""

    title: str
    category: str = "trending"


@dataclass
class ValidatedDraft:
    """A draft that passed acceptance rules, without internal-only fields."""

    title: str
    slug: str
    body: str
    excerpt: str
    category: str
    tags: List[str]
    image_url: Optional[str] = None
    image_source: Optional[str] = None
    image_license: Optional[str] = None
    status: str = "draft"

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``posts`` table row."""
        return {
            "title": self.title,
            "slug": self.slug,
            "telugu_body": self.body,
            "excerpt": self.excerpt,
            "category": self.category,
            "status": self.status,
            "image_url": self.image_url,
            "image_urls": [self.image_url] if self.image_url else [],
            "image_source": self.image_source,
            "image_license": self.image_license,
            "tags": list(self.tags),
        }


@dataclass
class ValidationResult:
    """Pairs a topic with its outcome; keeps topic identity through a batch."""

    index: int
    topic: Topic
    state: TopicState = TopicState.PENDING
    draft: Optional[ContentDraft] = None
    errors: List[str] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        return self.draft.confidence if self.draft is not None else 0.0

    @property
    def accepted(self) -> bool:
        return self.state == TopicState.ACCEPTED


@dataclass
class FailedTopic:
    """A rejected topic with human-readable reasons."""

    topic: str
    errors: List[str]


@dataclass
class BatchSummary:
    """Batch-level reporting numbers."""

    total: int
    success: int
    failed: int
    avg_confidence: float
    halted: bool = False


@dataclass
class BatchResult:
    """Outcome of ``generate_validated_drafts``.

    ``results`` holds every resolved topic in input order, including the
    internal confidence of each draft.
    """

    successful: List[ValidatedDraft]
    failed: List[FailedTopic]
    summary: BatchSummary
    results: List[ValidationResult] = field(default_factory=list)


# =============================================================================
# PERSISTENCE MODELS
# =============================================================================


@dataclass
class InsertResult:
    """Outcome of a draft insert at the persistence boundary."""

    inserted: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
