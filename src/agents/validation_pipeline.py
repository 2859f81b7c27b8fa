"""
Validation Pipeline -- batch synthesis with acceptance rules.

Each topic moves through ``PENDING -> SYNTHESIZING -> VALIDATING ->
(ACCEPTED | REJECTED)``.  Topics are dispatched in input order, in groups
of at most ``concurrency`` so the AI capability's rate limits are
respected; results are always aggregated back in input order.

Acceptance rules (every failed rule adds a reason):
    - title is non-empty
    - body is at least ``min_body_length`` characters
    - confidence is at least ``min_confidence``
    - fallback content only when ``allow_fallback`` is set

With ``continue_on_error=False`` the batch halts at the first rejection
(in input order).  Topics after it that already ran in the same group
are discarded; later groups are never started.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Union

from src.config import ValidationConfig
from src.models import (
    BatchResult,
    BatchSummary,
    ContentDraft,
    ContentSource,
    FailedTopic,
    Topic,
    TopicState,
    ValidatedDraft,
    ValidationResult,
)

logger = logging.getLogger("ValidationPipeline")


def check_acceptance(draft: ContentDraft, config: ValidationConfig) -> List[str]:
    """Human-readable reasons ``draft`` fails acceptance; empty when it passes."""
    errors: List[str] = []
    if not draft.title or not draft.title.strip():
        errors.append("Title is empty")
    body_length = len(draft.body.strip()) if draft.body else 0
    if body_length < config.min_body_length:
        errors.append(
            f"Body too short ({body_length} chars, minimum {config.min_body_length})"
        )
    if draft.confidence < config.min_confidence:
        errors.append(
            f"Confidence {draft.confidence:.2f} below minimum {config.min_confidence:.2f}"
        )
    if draft.source == ContentSource.FALLBACK and not config.allow_fallback:
        errors.append("Fallback template content is not accepted for publication")
    return errors


class ValidationPipeline:
    """Runs synthesis and acceptance over a batch of topics.

    Args:
        synthesizer: Object with ``async synthesize(topic) -> ContentDraft``.
        config: Acceptance thresholds and concurrency.
    """

    def __init__(self, synthesizer, config: Optional[ValidationConfig] = None) -> None:
        self.synthesizer = synthesizer
        self.config = config or ValidationConfig()

    async def _process(
        self, index: int, topic: Topic, semaphore: asyncio.Semaphore, verbose: bool
    ) -> ValidationResult:
        result = ValidationResult(index=index, topic=topic)
        async with semaphore:
            result.state = TopicState.SYNTHESIZING
            try:
                result.draft = await self.synthesizer.synthesize(topic)
            except Exception as e:
                # synthesize() is not expected to raise; treat it as a rejection
                logger.error("[VALIDATE] Synthesis crashed for '%s': %s", topic.title, e)
                result.errors.append(f"Synthesis failed: {type(e).__name__}: {e}")
                result.state = TopicState.REJECTED
                return result

        result.state = TopicState.VALIDATING
        result.errors.extend(check_acceptance(result.draft, self.config))
        result.state = TopicState.REJECTED if result.errors else TopicState.ACCEPTED

        log = logger.info if verbose else logger.debug
        if result.accepted:
            log(
                "[VALIDATE] #%d '%s' accepted (confidence %.2f)",
                index + 1,
                topic.title,
                result.confidence,
            )
        else:
            log(
                "[VALIDATE] #%d '%s' rejected: %s",
                index + 1,
                topic.title,
                "; ".join(result.errors),
            )
        return result

    async def generate_validated_drafts(
        self,
        topics: Sequence[Union[Topic, str]],
        verbose: bool = False,
        continue_on_error: bool = True,
    ) -> BatchResult:
        """Synthesize and validate ``topics``.

        Returns:
            ``BatchResult`` whose ``successful`` drafts carry no internal
            fields.  With ``continue_on_error=True`` every topic ends up in
            exactly one of ``successful`` or ``failed``.
        """
        items = [t if isinstance(t, Topic) else Topic(title=t) for t in topics]
        concurrency = max(1, self.config.concurrency)
        semaphore = asyncio.Semaphore(concurrency)

        resolved: List[ValidationResult] = []
        attempted: List[ValidationResult] = []
        halted = False
        for start in range(0, len(items), concurrency):
            group = list(enumerate(items[start:start + concurrency], start=start))
            group_results = await asyncio.gather(
                *(self._process(i, t, semaphore, verbose) for i, t in group)
            )
            attempted.extend(group_results)
            for result in sorted(group_results, key=lambda r: r.index):
                resolved.append(result)
                if not result.accepted and not continue_on_error:
                    halted = True
                    break
            if halted:
                logger.warning(
                    "[VALIDATE] Halting batch at topic #%d of %d",
                    len(resolved),
                    len(items),
                )
                break

        successful: List[ValidatedDraft] = []
        failed: List[FailedTopic] = []
        for result in resolved:
            if result.accepted:
                successful.append(result.draft.to_validated())
            else:
                failed.append(FailedTopic(topic=result.topic.title, errors=list(result.errors)))

        # Topics synthesized alongside a halting rejection still count here.
        avg_confidence = (
            sum(r.confidence for r in attempted) / len(attempted) if attempted else 0.0
        )
        summary = BatchSummary(
            total=len(items),
            success=len(successful),
            failed=len(failed),
            avg_confidence=round(avg_confidence, 4),
            halted=halted,
        )
        logger.info(
            "[VALIDATE] Batch done: %d/%d accepted, %d rejected, avg confidence %.2f%s",
            summary.success,
            summary.total,
            summary.failed,
            summary.avg_confidence,
            " (halted)" if halted else "",
        )
        return BatchResult(
            successful=successful, failed=failed, summary=summary, results=resolved
        )
