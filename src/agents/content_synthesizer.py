"""
Content Synthesis Engine -- turns a topic into a Telugu article draft.

``synthesize`` never raises.  The AI capability is tried first under a
bounded timeout; on any failure (timeout, malformed reply, capability
unavailable) a deterministic template is used instead, tagged
``source=fallback`` with a fixed low confidence.  An image is attached via
the Image Intelligence Engine when one is found; a missing image never
fails synthesis.

Slugs combine the ASCII part of the title with a timestamp suffix.  This
lowers collision risk but does not guarantee uniqueness; that is enforced
at the persistence boundary.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from src.config import Settings, ValidationConfig
from src.exceptions import CapabilityUnavailableError, ContentGenerationError
from src.models import (
    AIGeneration,
    ContentDraft,
    ContentSource,
    ImageFetchContext,
    Topic,
)
from src.tools.claude_client import ClaudeClient, strip_code_fences
from src.tools.ollama import OllamaClient
from src.utils import utc_now

logger = logging.getLogger("ContentSynthesizer")

MAX_SLUG_BASE = 50
MAX_TAGS = 8

_MOVIE_MARKERS = ("movie", "film", "సినిమా", "చిత్రం")

TELUGU_NAME_MAP = {
    "అల్లు అర్జున్": "allu arjun",
    "ప్రభాస్": "prabhas",
    "రామ్ చరణ్": "ram charan",
    "మహేష్ బాబు": "mahesh babu",
    "జూనియర్ ఎన్టీఆర్": "jr ntr",
    "ఎన్టీఆర్": "ntr",
    "సమంత": "samantha",
    "పుష్ప": "pushpa",
    "సలార్": "salaar",
    "దేవర": "devara",
}

ARTICLE_PROMPT = """You are a Telugu entertainment journalist writing for a Telugu news site.

Write an original article in Telugu about this trending topic: "{topic}"
Category: {category}

Requirements:
- Title in Telugu, under 100 characters
- Body of 4-5 paragraphs in natural, conversational Telugu (at least 400 characters)
- A one or two sentence excerpt
- 3-6 short tags (English or Telugu)
- Do not invent quotes or unverifiable facts

Return ONLY a JSON object:
{{"title": "...", "excerpt": "...", "body": "...", "tags": ["..."], "confidence": 0.0-1.0}}"""


# =========================================================================
# PURE HELPERS
# =========================================================================


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def _slug_base(text: str) -> str:
    base = text.lower()
    for telugu, latin in TELUGU_NAME_MAP.items():
        base = base.replace(telugu, latin)
    base = base.encode("ascii", "ignore").decode("ascii")
    base = re.sub(r"[^a-z0-9\s-]", "", base)
    base = re.sub(r"\s+", "-", base.strip())
    return re.sub(r"-+", "-", base)[:MAX_SLUG_BASE].strip("-")


def create_slug(title: str, now: Optional[datetime] = None, fallback: str = "") -> str:
    """URL slug from ``title`` plus a timestamp suffix.

    Well-known Telugu names are transliterated first, then everything
    outside ASCII is dropped.  When that leaves no letters (a Telugu
    headline about an unmapped name) the slug is built from ``fallback``,
    normally the English topic, and finally from ``post``.
    ``"Pushpa 2 Box Office!"`` becomes ``pushpa-2-box-office-<base36 millis>``.
    """
    now = now or utc_now()
    base = _slug_base(title)
    if not re.search(r"[a-z]", base):
        base = _slug_base(fallback) or base
    suffix = _to_base36(int(now.timestamp() * 1000))
    return f"{base or 'post'}-{suffix}"


def is_movie_topic(topic: str) -> bool:
    lowered = topic.lower()
    return any(marker in lowered for marker in _MOVIE_MARKERS)


def calculate_confidence(
    title: str, excerpt: str, body: str, has_image: bool, tags: List[str]
) -> float:
    """Heuristic draft quality score in ``[0, 1]``.

    Used when the capability does not report its own confidence.
    """
    score = 0.5
    if len(title) > 20:
        score += 0.1
    if len(excerpt) > 50:
        score += 0.1
    if len(body) > 500:
        score += 0.15
    elif len(body) > 300:
        score += 0.1
    if has_image:
        score += 0.1
    if len(tags) > 2:
        score += 0.05
    return min(1.0, round(score, 4))


def build_fallback_article(topic: str) -> Dict[str, Any]:
    """Deterministic four-paragraph article for ``topic``."""
    if is_movie_topic(topic):
        title = f"{topic}: తాజా అప్‌డేట్స్ మరియు విశేషాలు"
        excerpt = f"{topic} గురించి తాజా సమాచారం, అభిమానుల స్పందన మరియు సినీ వర్గాల అంచనాలు ఇక్కడ చూడండి."
        paragraphs = [
            f"{topic} ప్రస్తుతం తెలుగు సినీ ప్రేక్షకుల్లో హాట్ టాపిక్‌గా మారింది. "
            "సోషల్ మీడియాలో ఈ సినిమాకు సంబంధించిన చర్చలు జోరుగా సాగుతున్నాయి.",
            "చిత్ర బృందం నుంచి వస్తున్న అప్‌డేట్స్ అభిమానుల్లో అంచనాలను మరింత పెంచుతున్నాయి. "
            "టీజర్, పాటలు మరియు ప్రమోషన్ కార్యక్రమాలపై ప్రేక్షకులు ఆసక్తిగా ఎదురుచూస్తున్నారు.",
            "సినీ విశ్లేషకుల అభిప్రాయం ప్రకారం ఈ చిత్రం బాక్సాఫీస్ వద్ద మంచి ఓపెనింగ్స్ సాధించే అవకాశం ఉంది. "
            "ట్రేడ్ వర్గాలు కూడా ఈ ప్రాజెక్ట్‌పై సానుకూలంగా స్పందిస్తున్నాయి.",
            f"{topic} గురించి మరిన్ని తాజా విశేషాల కోసం మా వెబ్‌సైట్‌ను ఫాలో అవ్వండి. "
            "అధికారిక ప్రకటనలు వచ్చిన వెంటనే మీకు అందిస్తాము.",
        ]
        tags = ["telugu cinema", "tollywood", "movie news"]
    else:
        title = f"{topic}: పూర్తి వివరాలు"
        excerpt = f"{topic} పై తాజా వార్తలు, ప్రజల స్పందన మరియు ముఖ్యమైన అంశాలు ఈ కథనంలో తెలుసుకోండి."
        paragraphs = [
            f"{topic} గురించి ప్రస్తుతం తెలుగు రాష్ట్రాల్లో విస్తృతంగా చర్చ జరుగుతోంది. "
            "ఈ అంశంపై సోషల్ మీడియాలో పెద్ద ఎత్తున పోస్టులు కనిపిస్తున్నాయి.",
            "ఈ విషయంపై వివిధ వర్గాల నుంచి భిన్నమైన అభిప్రాయాలు వ్యక్తమవుతున్నాయి. "
            "నిపుణులు దీనిని జాగ్రత్తగా పరిశీలించాలని సూచిస్తున్నారు.",
            "రాబోయే రోజుల్లో ఈ అంశానికి సంబంధించి మరిన్ని కీలక పరిణామాలు చోటుచేసుకునే అవకాశం ఉంది. "
            "అధికారిక సమాచారం కోసం అందరూ ఎదురుచూస్తున్నారు.",
            f"{topic} పై తాజా అప్‌డేట్స్ కోసం మా వెబ్‌సైట్‌ను తరచూ సందర్శించండి. "
            "ప్రతి ముఖ్యమైన పరిణామాన్ని మీకు వెంటనే అందిస్తాము.",
        ]
        tags = ["telugu news", "trending"]
    return {
        "title": title,
        "excerpt": excerpt,
        "body": "\n\n".join(paragraphs),
        "tags": tags,
    }


def parse_generation(text: str) -> Dict[str, Any]:
    """Parse the capability's JSON reply.

    Raises:
        ContentGenerationError: If the reply is not a JSON object with a
            non-empty ``title`` and ``body``.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ContentGenerationError(f"AI reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ContentGenerationError("AI reply is not a JSON object")

    title = str(data.get("title") or "").strip()
    body = str(data.get("body") or "").strip()
    if not title or not body:
        raise ContentGenerationError("AI reply is missing title or body")

    tags = data.get("tags") or []
    if not isinstance(tags, list):
        tags = [tags]
    confidence = data.get("confidence")
    try:
        confidence = float(confidence) if confidence is not None else None
    except (TypeError, ValueError):
        confidence = None
    if confidence is not None and not 0.0 <= confidence <= 1.0:
        confidence = None

    return {
        "title": title,
        "body": body,
        "excerpt": str(data.get("excerpt") or "").strip(),
        "tags": [str(t).strip() for t in tags if str(t).strip()][:MAX_TAGS],
        "confidence": confidence,
    }


def create_capability(settings: Settings) -> Union[ClaudeClient, OllamaClient]:
    """AI capability selected by ``settings.ai_provider``."""
    if settings.ai_provider == "ollama":
        return OllamaClient(
            base_url=settings.ollama_url,
            model=settings.ollama_model,
            timeout=settings.validation.ai_timeout_seconds,
        )
    return ClaudeClient(model=settings.llm_model)


# =========================================================================
# ENGINE
# =========================================================================


class ContentSynthesizer:
    """Synthesizes one ``ContentDraft`` per topic.

    Args:
        capability: Object with ``async generate_content(prompt) ->
            AIGeneration``, or ``None`` to always use the template.
        image_engine: Object with ``async select_best_image(context)``, or
            ``None`` to skip images.
        config: Timeout and fallback confidence.
        clock: Source of "now" for slugs; injectable for tests.
    """

    def __init__(
        self,
        capability: Any = None,
        image_engine: Any = None,
        config: Optional[ValidationConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.capability = capability
        self.image_engine = image_engine
        self.config = config or ValidationConfig()
        self.clock = clock

    async def _generate(self, topic: Topic) -> Dict[str, Any]:
        if self.capability is None:
            raise CapabilityUnavailableError("no AI capability configured")
        prompt = ARTICLE_PROMPT.format(topic=topic.title, category=topic.category)
        generation: AIGeneration = await asyncio.wait_for(
            self.capability.generate_content(prompt),
            timeout=self.config.ai_timeout_seconds,
        )
        parsed = parse_generation(generation.text)
        if parsed["confidence"] is None:
            parsed["confidence"] = generation.confidence
        return parsed

    async def _attach_image(self, draft: ContentDraft, topic: Topic) -> None:
        if self.image_engine is None:
            return
        try:
            result = await self.image_engine.select_best_image(
                ImageFetchContext(topic=topic.title, category=topic.category)
            )
        except Exception as e:
            logger.warning("[SYNTH] Image selection failed for '%s': %s", topic.title, e)
            return
        image = result.selected_image
        if image is None:
            logger.info("[SYNTH] No image for '%s': %s", topic.title, result.selection_reason)
            return
        draft.image_url = image.url
        draft.image_source = image.source.value
        draft.image_license = image.metadata.license

    async def synthesize(self, topic: Union[Topic, str]) -> ContentDraft:
        """Produce a draft for ``topic``.  Never raises."""
        if isinstance(topic, str):
            topic = Topic(title=topic)

        source = ContentSource.AI
        try:
            article = await self._generate(topic)
        except asyncio.TimeoutError:
            logger.warning(
                "[SYNTH] AI timed out after %.0fs for '%s'; using template",
                self.config.ai_timeout_seconds,
                topic.title,
            )
            article = None
        except CapabilityUnavailableError as e:
            logger.info("[SYNTH] AI unavailable (%s); using template for '%s'", e, topic.title)
            article = None
        except Exception as e:
            logger.warning(
                "[SYNTH] AI generation failed for '%s': %s: %s; using template",
                topic.title,
                type(e).__name__,
                e,
            )
            article = None

        if article is None:
            source = ContentSource.FALLBACK
            article = build_fallback_article(topic.title)

        draft = ContentDraft(
            topic=topic.title,
            title=article["title"],
            body=article["body"],
            excerpt=article["excerpt"],
            tags=list(article["tags"]),
            category=topic.category,
            slug=create_slug(article["title"], self.clock(), fallback=topic.title),
            confidence=0.0,
            source=source,
            created_at=self.clock(),
        )

        await self._attach_image(draft, topic)

        if source == ContentSource.FALLBACK:
            draft.confidence = self.config.fallback_confidence
        elif article.get("confidence") is not None:
            draft.confidence = article["confidence"]
        else:
            draft.confidence = calculate_confidence(
                draft.title, draft.excerpt, draft.body, draft.image_url is not None, draft.tags
            )

        logger.info(
            "[SYNTH] '%s' -> %s draft (confidence %.2f, image %s)",
            topic.title,
            source.value,
            draft.confidence,
            "yes" if draft.image_url else "no",
        )
        return draft
