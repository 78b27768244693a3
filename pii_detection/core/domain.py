# pii_detection/core/domain.py

"""Domain models for detection results."""

from dataclasses import dataclass, field, asdict, replace
from typing import List, Dict, Any, Optional, Tuple

from pii_detection.core.definitions import EntitySource, DocumentType


@dataclass(frozen=True)
class Entity:
    """Represents a single detected PII entity.

    Entities are immutable. Passes derive new instances with
    ``dataclasses.replace`` instead of mutating shared lists.

    Attributes:
        text: Text of the entity in its current coordinate space
        entity_type: Type of entity (e.g., EMAIL, SWISS_AVS)
        start: Starting character position
        end: Ending character position (exclusive)
        confidence: Confidence score (0.0 to 1.0)
        source: Detector that produced the entity (RULE, ML, BOTH, MANUAL)
        metadata: Annotations added by the passes
    """

    text: str
    entity_type: str
    start: int
    end: int
    confidence: float
    source: str = EntitySource.RULE
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[int, int, str]:
        return (self.start, self.end, self.entity_type)

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Entity") -> bool:
        return self.start < other.end and other.start < self.end

    def with_metadata(self, **values: Any) -> "Entity":
        merged = dict(self.metadata)
        merged.update(values)
        return replace(self, metadata=merged)


@dataclass(frozen=True)
class NormalizationResult:
    """Normalized text plus the map back to original offsets.

    ``index_map[i]`` is the original index normalized character ``i`` came from.
    """

    normalized_text: str
    index_map: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class ContextWord:
    word: str
    weight: float = 1.0
    polarity: str = "positive"

    @property
    def is_positive(self) -> bool:
        return self.polarity == "positive"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a format or checksum validator."""

    is_valid: bool
    confidence: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class ClassificationFeature:
    name: str
    weight: float
    match: Optional[str] = None
    position: Optional[float] = None


@dataclass(frozen=True)
class DocumentClassification:
    """Document type inferred by the classifier.

    Computed once per document and consumed read-only by the rule engine.
    """

    document_type: str = DocumentType.UNKNOWN
    confidence: float = 0.0
    secondary_type: Optional[str] = None
    language: str = "en"
    features: List[ClassificationFeature] = field(default_factory=list)


@dataclass(frozen=True)
class EnhancementResult:
    entity: Entity
    context_found: List[str] = field(default_factory=list)
    boost_applied: float = 0.0
    original_confidence: float = 0.0
    skipped: bool = False
    skip_reason: Optional[str] = None


@dataclass(frozen=True)
class PassResult:
    """Statistics for one pipeline pass."""

    pass_name: str
    entities_added: int = 0
    entities_modified: int = 0
    entities_removed: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None


@dataclass
class DetectionResult:
    """Result object returned by the detection service.

    Attributes:
        entities: Detected entities in original text coordinates
        document_type: Classified document type
        metadata: Durations, pass statistics, counts and detection mode
    """

    entities: List[Entity] = field(default_factory=list)
    document_type: str = DocumentType.UNKNOWN
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Returns a JSON-serializable view of the result."""
        metadata = dict(self.metadata)
        metadata["pass_results"] = [
            asdict(p) if isinstance(p, PassResult) else p
            for p in metadata.get("pass_results", [])
        ]
        classification = metadata.get("classification")
        if isinstance(classification, DocumentClassification):
            metadata["classification"] = asdict(classification)
        return {
            "entities": [asdict(e) for e in self.entities],
            "document_type": self.document_type,
            "metadata": metadata,
        }
