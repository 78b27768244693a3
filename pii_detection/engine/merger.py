# pii_detection/engine/merger.py

"""Merging of NER tokens and fusion of regex and NER results."""

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from pii_detection.core.definitions import EntitySource
from pii_detection.core.domain import Entity

if TYPE_CHECKING:
    from pii_detection.engine.ner_detector import NerToken

logger = logging.getLogger(__name__)

AGREEMENT_BOOST = 1.1


def merge_subword_tokens(
    tokens: Sequence["NerToken"],
    source_text: str,
    max_gap: int = 5,
    min_length: int = 2,
) -> List[Entity]:
    """Stitches B-/I- tagged tokens into entities.

    A token extends the current run when it is tagged I- with the run's
    type and starts at most max_gap characters after the run ends. Scores
    are averaged and the entity text is re-sliced from source_text, never
    joined from token fragments.

    Args:
        tokens: Tagged tokens ordered by start offset
        source_text: Text the token offsets index into
        max_gap: Largest gap in characters bridged inside a run
        min_length: Merged entities shorter than this are dropped

    Returns:
        ML entities ordered by start offset
    """
    entities: List[Entity] = []
    run: Optional[Dict] = None

    def flush() -> None:
        if run is None:
            return
        text = source_text[run["start"] : run["end"]]
        if len(text.strip()) < min_length:
            return
        entities.append(
            Entity(
                text=text,
                entity_type=run["type"],
                start=run["start"],
                end=run["end"],
                confidence=sum(run["scores"]) / len(run["scores"]),
                source=EntitySource.ML,
            )
        )

    for token in tokens:
        prefix, _, entity_type = token.label.partition("-")
        if (
            run is not None
            and prefix == "I"
            and entity_type == run["type"]
            and token.start - run["end"] <= max_gap
        ):
            run["end"] = max(run["end"], token.end)
            run["scores"].append(token.score)
            continue

        flush()
        run = {"type": entity_type, "start": token.start, "end": token.end, "scores": [token.score]}

    flush()
    return entities


def fuse(regex_entities: Sequence[Entity], ml_entities: Sequence[Entity]) -> List[Entity]:
    """Combines regex and NER results.

    Regex matches go first, deduplicated by (start, end, type). An NER
    match overlapping a regex match promotes it to BOTH with a boosted
    confidence. An NER match overlapping an earlier NER match keeps the
    more confident of the two; other NER matches are appended.

    Args:
        regex_entities: Entities from the pattern recognizers
        ml_entities: Entities from the NER model

    Returns:
        Combined entities sorted by start offset
    """
    fused: List[Entity] = []
    seen = set()

    for entity in regex_entities:
        if entity.key in seen:
            continue
        seen.add(entity.key)
        fused.append(entity)

    promoted = 0
    for ml_entity in ml_entities:
        index = next(
            (
                i
                for i, existing in enumerate(fused)
                if existing.overlaps(ml_entity)
            ),
            None,
        )
        if index is None:
            fused.append(ml_entity)
            continue

        existing = fused[index]
        if existing.source == EntitySource.ML:
            # Two model spans over the same text are not agreement
            if ml_entity.confidence > existing.confidence:
                fused[index] = ml_entity
            continue
        if existing.source == EntitySource.BOTH:
            # Agreement is rewarded once per regex match
            continue
        fused[index] = replace(
            existing,
            source=EntitySource.BOTH,
            confidence=min(1.0, max(existing.confidence, ml_entity.confidence) * AGREEMENT_BOOST),
            metadata={**existing.metadata, "ml_entity_type": ml_entity.entity_type},
        )
        promoted += 1

    fused.sort(key=lambda e: e.start)

    if promoted:
        logger.debug(f"Promoted {promoted} entities to BOTH", extra={"entity_count": len(fused)})
    return fused
