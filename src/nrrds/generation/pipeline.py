"""Three-stage comic generation: script, character analysis, JSON formatting.

Each stage is one sequential text-generation call. A failure at any stage
aborts the run with a GenerationError tagged with the stage name; only the
primary formatter has a second chance (the fallback formatter).
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from ..config import PANEL_BACKGROUNDS, settings
from ..core.exceptions import (
    FormatRepairableError,
    GenerationCancelledError,
    LLMException,
    StorageDegradedError,
    UpstreamServiceError,
)
from ..core.resilience import CircuitBreakerOpen
from ..feedback.signals import extract_concepts, extract_tokens
from ..llm import prompts
from ..llm.client import CompletionResult, CompletionStatus, TextGenerator
from ..llm.json_utils import extract_braced_json, parse_model_json, sanitize_model_json
from ..models import Character, Comic, DialogueLine, GenerationContext, Guidance, Panel, utcnow
from ..storage.kv import KeyValueStore
from .comic_ids import generate_unique_comic_id, generate_url_safe_id
from .styles import assign_character_styles

PLACEHOLDER_CHARACTER = "Character"
PLACEHOLDER_EMOJI = "😊"
PLACEHOLDER_TEXT = "..."

STAGE_SCRIPT = "script"
STAGE_ANALYSIS = "analysis"
STAGE_FORMAT = "format"
STAGE_FORMAT_FALLBACK = "format_fallback"


@dataclass(frozen=True)
class StageConfig:
    model: str
    creativity: float
    max_output_tokens: int


def _default_stages() -> Dict[str, StageConfig]:
    return {
        STAGE_SCRIPT: StageConfig(
            settings.SCRIPT_MODEL, settings.SCRIPT_CREATIVITY, settings.SCRIPT_MAX_OUTPUT_TOKENS
        ),
        STAGE_ANALYSIS: StageConfig(
            settings.ANALYSIS_MODEL, settings.ANALYSIS_CREATIVITY, settings.ANALYSIS_MAX_OUTPUT_TOKENS
        ),
        STAGE_FORMAT: StageConfig(
            settings.FORMAT_MODEL, settings.FORMAT_CREATIVITY, settings.FORMAT_MAX_OUTPUT_TOKENS
        ),
    }


def validate_comic_structure(data: Dict[str, Any]) -> None:
    """Check the shape the primary formatter must produce.

    Raises:
        FormatRepairableError: If title, panels or any panel's
            characters/dialogue arrays are missing
    """
    if not data.get("title"):
        raise FormatRepairableError("missing title")
    panels = data.get("panels")
    if not isinstance(panels, list) or not panels:
        raise FormatRepairableError("panels must be a non-empty array")

    for index, panel in enumerate(panels, start=1):
        if not isinstance(panel, dict):
            raise FormatRepairableError(f"panel {index} is not an object")
        if not isinstance(panel.get("characters"), list):
            raise FormatRepairableError(f"panel {index}: missing characters array")
        if not isinstance(panel.get("dialogue"), list):
            raise FormatRepairableError(f"panel {index}: missing dialogue array")

        names = {c.get("name") for c in panel["characters"] if isinstance(c, dict)}
        for line_index, line in enumerate(panel["dialogue"], start=1):
            speaker = line.get("speaker") if isinstance(line, dict) else None
            if speaker and speaker not in names:
                logger.warning(
                    f"Panel {index}, line {line_index}: speaker '{speaker}' "
                    f"not among characters {sorted(n for n in names if n)}"
                )


def backfill_panels(data: Dict[str, Any]) -> None:
    """Give every panel placeholder characters/dialogue where arrays are missing."""
    for index, panel in enumerate(data["panels"], start=1):
        if not isinstance(panel.get("characters"), list):
            logger.warning(f"Fallback panel {index}: missing characters, adding placeholder")
            panel["characters"] = [{
                "name": PLACEHOLDER_CHARACTER,
                "emoji": PLACEHOLDER_EMOJI,
                "style": 1,
                "effect": None,
            }]
        if not isinstance(panel.get("dialogue"), list):
            logger.warning(f"Fallback panel {index}: missing dialogue, adding placeholder")
            first = panel["characters"][0] if panel["characters"] else {}
            speaker = first.get("name") if isinstance(first, dict) else None
            panel["dialogue"] = [{
                "text": PLACEHOLDER_TEXT,
                "speaker": speaker or PLACEHOLDER_CHARACTER,
                "type": "speech",
                "style": "normal",
            }]


def _character(raw: Any) -> Optional[Character]:
    if isinstance(raw, str) and raw.strip():
        return Character(name=raw.strip())
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    return Character(**{**raw, "name": name.strip()})


def _dialogue(raw: Any) -> Optional[DialogueLine]:
    if isinstance(raw, str):
        return DialogueLine(text=raw)
    if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
        return None
    speaker = raw.get("speaker")
    return DialogueLine(**{**raw, "speaker": speaker.strip() if isinstance(speaker, str) else ""})


def build_panels(raw_panels: List[Dict[str, Any]]) -> List[Panel]:
    """Convert formatter output into Panels, dropping unusable entries."""
    panels = []
    for raw in raw_panels:
        panels.append(Panel(
            header=raw.get("header", ""),
            characters=[c for c in map(_character, raw.get("characters") or []) if c],
            dialogue=[d for d in map(_dialogue, raw.get("dialogue") or []) if d],
        ))
    return panels


def reconcile_speakers(panels: List[Panel]) -> None:
    """Make every dialogue speaker name a character of the same panel.

    Lines without a speaker go to the panel's first character; speakers the
    formatter forgot to declare are added as characters.
    """
    for panel in panels:
        names = {c.name for c in panel.characters}
        for line in panel.dialogue:
            if not line.speaker:
                if not panel.characters:
                    panel.characters.append(Character(name=PLACEHOLDER_CHARACTER, emoji=PLACEHOLDER_EMOJI))
                    names.add(PLACEHOLDER_CHARACTER)
                line.speaker = panel.characters[0].name
            elif line.speaker not in names:
                panel.characters.append(Character(name=line.speaker, emoji=PLACEHOLDER_EMOJI))
                names.add(line.speaker)


class GenerationPipeline:
    """Runs the generation stages and assembles the finished Comic."""

    def __init__(
        self,
        client: TextGenerator,
        store: KeyValueStore,
        stages: Dict[str, StageConfig] | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.store = store
        self.stages = stages or _default_stages()
        self._clock = clock
        self._rng = rng or random.Random()

    async def generate(self, guidance: Guidance, cancel_event: asyncio.Event | None = None) -> Comic:
        """Generate one comic under ``guidance``.

        Raises:
            UpstreamServiceError: A stage call failed or returned unusable output
            GenerationCancelledError: ``cancel_event`` was set before or during a stage
        """
        started = self._clock()
        logger.info(
            f"Generating comic: {guidance.panel_count} panels, humor {guidance.humor_level}, "
            f"temperature {guidance.temperature:.2f}"
        )

        script = await self.write_script(guidance, cancel_event)
        analysis = await self.analyze_characters(script, cancel_event)
        try:
            title, panels = await self.format_comic(script, analysis, cancel_event)
        except FormatRepairableError as e:
            logger.warning(f"Primary formatting failed ({e.reason}), trying fallback formatter")
            title, panels = await self.format_comic_fallback(script, analysis, cancel_event)

        reconcile_speakers(panels)
        comic = Comic(title=title, panels=panels)
        assign_character_styles(comic)

        comic.tokens = extract_tokens(comic)
        comic.concepts = extract_concepts(comic, guidance)
        comic.generation_context = GenerationContext.from_guidance(guidance)

        now = self._clock()
        comic.created_at = now
        comic.id = await self._comic_id(title, now)
        for index, panel in enumerate(comic.panels):
            panel.background = PANEL_BACKGROUNDS[index % len(PANEL_BACKGROUNDS)]

        elapsed = (self._clock() - started).total_seconds()
        logger.success(
            f"Comic '{comic.title}' ({comic.id}) generated in {elapsed:.1f}s: "
            f"{len(comic.panels)} panels, {len(comic.tokens)} tokens, concepts={comic.concepts}"
        )
        return comic

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def write_script(self, guidance: Guidance, cancel_event: asyncio.Event | None = None) -> str:
        """Stage 1: free-form script; one retry with a doubled budget if truncated."""
        config = self.stages[STAGE_SCRIPT]
        user_prompt = prompts.build_script_prompt(guidance)
        logger.info(f"Stage {STAGE_SCRIPT}: requesting script from {config.model}")

        result = await self._call(
            STAGE_SCRIPT, prompts.SCRIPT_SYSTEM_PROMPT, user_prompt,
            config.model, config.creativity, config.max_output_tokens, cancel_event,
        )
        if result.status == CompletionStatus.TRUNCATED:
            logger.warning(
                f"Script truncated at {config.max_output_tokens} tokens, "
                f"retrying with {config.max_output_tokens * 2}"
            )
            result = await self._call(
                STAGE_SCRIPT, prompts.SCRIPT_SYSTEM_PROMPT, user_prompt,
                config.model, settings.SCRIPT_RETRY_CREATIVITY, config.max_output_tokens * 2, cancel_event,
            )
        return self._require_text(STAGE_SCRIPT, result)

    async def analyze_characters(self, script: str, cancel_event: asyncio.Event | None = None) -> str:
        """Stage 2: enumerate characters and attribute every line."""
        config = self.stages[STAGE_ANALYSIS]
        logger.info(f"Stage {STAGE_ANALYSIS}: attributing dialogue with {config.model}")
        result = await self._call(
            STAGE_ANALYSIS, prompts.ANALYSIS_SYSTEM_PROMPT, prompts.build_analysis_prompt(script),
            config.model, config.creativity, config.max_output_tokens, cancel_event,
        )
        return self._require_text(STAGE_ANALYSIS, result)

    async def format_comic(
        self, script: str, analysis: str, cancel_event: asyncio.Event | None = None
    ) -> tuple[str, List[Panel]]:
        """Stage 3: strict JSON formatting.

        Raises:
            FormatRepairableError: Any failure the fallback formatter may recover from
        """
        config = self.stages[STAGE_FORMAT]
        logger.info(f"Stage {STAGE_FORMAT}: formatting JSON with {config.model}")
        try:
            result = await self._call(
                STAGE_FORMAT, prompts.FORMAT_SYSTEM_PROMPT, prompts.build_format_prompt(script, analysis),
                config.model, config.creativity, config.max_output_tokens, cancel_event,
            )
            text = self._require_text(STAGE_FORMAT, result)
        except GenerationCancelledError:
            raise
        except UpstreamServiceError as e:
            raise FormatRepairableError(e.reason) from e

        try:
            data = parse_model_json(sanitize_model_json(text))
        except ValueError as e:
            raise FormatRepairableError(str(e), raw_response=text) from e
        validate_comic_structure(data)

        try:
            panels = build_panels(data["panels"])
        except PydanticValidationError as e:
            raise FormatRepairableError(f"invalid panel content: {e.error_count()} errors", raw_response=text) from e
        return str(data["title"]), panels

    async def format_comic_fallback(
        self, script: str, analysis: str, cancel_event: asyncio.Event | None = None
    ) -> tuple[str, List[Panel]]:
        """Second formatting attempt with a terser prompt and brace extraction."""
        config = self.stages[STAGE_FORMAT]
        result = await self._call(
            STAGE_FORMAT_FALLBACK, prompts.FALLBACK_SYSTEM_PROMPT, prompts.build_fallback_prompt(script, analysis),
            config.model, config.creativity, config.max_output_tokens, cancel_event,
        )
        text = self._require_text(STAGE_FORMAT_FALLBACK, result)

        try:
            data = parse_model_json(extract_braced_json(text))
        except ValueError as e:
            logger.error(f"Fallback formatter output unparseable: {text[:300]}")
            raise UpstreamServiceError(STAGE_FORMAT_FALLBACK, f"both formatting attempts failed: {e}") from e

        panels = data.get("panels")
        if not data.get("title") or not isinstance(panels, list) or not panels:
            raise UpstreamServiceError(STAGE_FORMAT_FALLBACK, "missing title or panels")
        if not all(isinstance(p, dict) for p in panels):
            raise UpstreamServiceError(STAGE_FORMAT_FALLBACK, "panels must be objects")

        backfill_panels(data)
        try:
            return str(data["title"]), build_panels(panels)
        except PydanticValidationError as e:
            raise UpstreamServiceError(STAGE_FORMAT_FALLBACK, f"invalid panel content: {e.error_count()} errors") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(
        self,
        stage: str,
        system_prompt: str,
        user_prompt: str,
        model: str,
        creativity: float,
        max_output_tokens: int,
        cancel_event: asyncio.Event | None,
    ) -> CompletionResult:
        """One text-generation call, cancellable and tagged with its stage."""
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelledError(stage)

        started = self._clock()
        try:
            result = await self._race(stage, self.client.complete(
                system_prompt,
                user_prompt,
                model=model,
                creativity=creativity,
                max_output_tokens=max_output_tokens,
            ), cancel_event)
        except (LLMException, CircuitBreakerOpen) as e:
            logger.error(f"Stage {stage} call failed: {e}")
            raise UpstreamServiceError(stage, str(e)) from e

        elapsed = (self._clock() - started).total_seconds()
        logger.info(
            f"Stage {stage} finished in {elapsed:.1f}s: status={result.status.value}, "
            f"{len(result.text)} chars, usage={result.usage}"
        )
        return result

    async def _race(self, stage: str, call: Awaitable[CompletionResult], cancel_event: asyncio.Event | None):
        if cancel_event is None:
            return await call

        call_task = asyncio.ensure_future(call)
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not call_task.done():
                call_task.cancel()

        if call_task in done:
            return call_task.result()
        logger.info(f"Generation cancelled during stage {stage}")
        raise GenerationCancelledError(stage)

    @staticmethod
    def _require_text(stage: str, result: CompletionResult) -> str:
        if result.status != CompletionStatus.COMPLETED:
            raise UpstreamServiceError(stage, f"response {result.status.value} (reason: {result.reason})")
        if not result.text.strip():
            raise UpstreamServiceError(stage, "empty response")
        return result.text

    async def _comic_id(self, title: str, now: datetime) -> str:
        try:
            return await generate_unique_comic_id(self.store, title, now, self._rng)
        except StorageDegradedError as e:
            logger.warning(f"Could not check id collisions, using unchecked id: {e}")
            return generate_url_safe_id(title, now, self._rng)
