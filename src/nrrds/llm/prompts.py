"""Prompt builders for the three generation stages.

Prompt prose is tunable; only the inputs each builder consumes are fixed.
"""

from typing import Iterable

from ..models import Guidance

SCRIPT_SYSTEM_PROMPT = (
    "You are an inventive comic writer and visual comedy architect. Subvert "
    "expectations, build escalating gags and land a surprising punchline, "
    "while keeping everything safe for work."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are a methodical script analyst. Identify every character and "
    "attribute every line of dialogue precisely. Leave no character unnamed "
    "and no line unattributed."
)

FORMAT_SYSTEM_PROMPT = (
    "You are a strict formatter. Convert the provided content into the exact "
    "JSON structure requested. Do not add content. Output only valid JSON."
)

FALLBACK_SYSTEM_PROMPT = (
    "You are a mechanical JSON formatter. Output only one valid JSON object, "
    "never markdown or explanations."
)

_FUNNY_DIAL = """FUNNY DIAL: {level} / 11
- 0-3: Light wit, observational, grounded.
- 4-7: Punchy, playful, occasional absurdity.
- 8-10: Bold exaggeration, unexpected twists, visual gags, meta asides.
- 11: Max chaos (still SFW): surreal misdirection, background gags, rule-of-three escalations."""


def _joined(items: Iterable[str]) -> str:
    return ", ".join(items)


def build_guidance_prompt(guidance: Guidance) -> str:
    """Render the steering section embedded into the script prompt."""
    sections = [_FUNNY_DIAL.format(level=guidance.humor_level)]

    if guidance.style_refs:
        sections.append(
            f"STYLE REFERENCES (vibes only, do not imitate directly): {_joined(guidance.style_refs)}"
        )
    if guidance.encourage_tokens:
        sections.append(
            "ENCOURAGE these language/comedic patterns readers enjoyed: "
            f"{_joined(guidance.encourage_token_names())}"
        )
    if guidance.avoid_tokens:
        sections.append(
            "AVOID these language patterns readers found uninteresting: "
            f"{_joined(guidance.avoid_token_names())}"
        )
    if guidance.encourage_concepts:
        sections.append(f"CONSIDER these themes: {_joined(guidance.encourage_concepts)}")
    if guidance.avoid_concepts:
        sections.append(f"AVOID these overused themes: {_joined(guidance.avoid_concepts)}")

    sections.append("\n".join([
        "CREATIVE DIRECTION:",
        "- Prefer fresh perspectives: hobbies, social situations, exercise, food, tech mishaps, family moments.",
        "- Avoid repetitive tired/coffee/workplace-stress setups unless explicitly encouraged.",
        "- Include at least one background gag that pays off on a second read.",
        f"- Build to a clear punchline in panel {guidance.panel_count}.",
    ]))
    sections.append("\n".join([
        "STRUCTURE REQUIREMENTS:",
        f"- {guidance.panel_count} panels; complete story (setup, development, punchline).",
        "- Each panel includes time/location context, a character list with name and emoji "
        "kept separate, and explicit speaker/thinker tags using character names only.",
        "- Keep it suitable for all audiences.",
    ]))
    return "\n\n".join(sections)


def build_script_prompt(guidance: Guidance) -> str:
    plural = "" if guidance.panel_count == 1 else "s"
    return "\n".join([
        f"Write a funny, original comic strip script for {guidance.panel_count} panel{plural}.",
        "Use strong comedic timing and clear speaker attribution.",
        "",
        build_guidance_prompt(guidance),
        "",
        "OUTPUT RULES:",
        "- Do NOT use JSON; write descriptive text with explicit character tags.",
        "",
        "FORMAT EXAMPLE:",
        "Saturday morning, neighborhood yard sale",
        "Characters: Alex (😊), Sam (🤔)",
        'Alex: "I brought exact change and zero self-control."',
        'Sam: "What could go wrong?"',
        'Alex thinks: "Everything. Ideally in a hilarious way."',
    ])


def build_analysis_prompt(script: str) -> str:
    return f"""Analyze this comic script and identify all characters, their dialogue and thoughts. Be precise about who says what in each panel.

COMIC SCRIPT:
{script}

For each panel list:
- Characters: names with their emojis
- Dialogue assignments: who says or thinks each line
- Types: speech or thought for each line"""


def build_format_prompt(script: str, analysis: str) -> str:
    return f"""Format this comic script into the exact JSON structure below, using the character analysis for attribution.

COMIC SCRIPT:
{script}

CHARACTER ANALYSIS:
{analysis}

{{
  "title": "<title>",
  "panels": [
    {{
      "header": "<time/location>",
      "characters": [
        {{"name": "<name without emoji>", "emoji": "<emoji>", "style": 1, "effect": null}}
      ],
      "dialogue": [
        {{"text": "<line>", "speaker": "<character name>", "type": "speech|thought", "style": "normal|angry|excited|sad"}}
      ]
    }}
  ]
}}

RULES:
- Every dialogue entry has a speaker matching a character in the same panel.
- Character names never contain emojis.
- "effect" is null, "shake" or "bounce".
- Respond with ONLY the JSON object."""


def build_fallback_prompt(script: str, analysis: str) -> str:
    return f"""Convert this comic script to JSON. Output ONLY valid JSON with double-quoted strings, no markdown.

SCRIPT: {script}

ANALYSIS: {analysis}

STRUCTURE:
{{"title":"<title>","panels":[{{"header":"<time/location>","characters":[{{"name":"<name>","emoji":"<emoji>","style":1,"effect":null}}],"dialogue":[{{"text":"<text>","speaker":"<name>","type":"speech","style":"normal"}}]}}]}}"""
