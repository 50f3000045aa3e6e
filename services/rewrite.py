"""
Voice rewrite loop: score a draft against a fingerprint, ask the generator to
fix the flagged deviations, and keep a rewrite only when it scores higher.
Stops at the threshold, when no flags are left, when a rewrite does not help,
or after max_attempts generator calls.
"""
import asyncio
import logging
from typing import List, Optional

from models.internal import Fingerprint
from models.responses import AuthenticityFlag, RewriteResult
from services.agents.base import parse_json_object
from services.errors import GenerationError
from services.fingerprint import format_fingerprint_for_prompt, score_authenticity
from services.generation import TextGenerator

logger = logging.getLogger(__name__)


def build_rewrite_prompt(
    text: str,
    fp: Fingerprint,
    flags: List[AuthenticityFlag],
    context: Optional[str] = None,
) -> str:
    flag_lines = "\n".join(
        f"{i}. [{f.dimension}] {f.reason}" + (f" -> {f.suggestion}" if f.suggestion else "")
        for i, f in enumerate(flags, 1)
    )
    parts = [
        "Rewrite the draft below so it reads as if this creator wrote it. "
        "Keep the message and every fact intact; change only phrasing, word choice and structure.",
        "",
        format_fingerprint_for_prompt(fp),
    ]
    if context:
        parts += ["", f"THE DRAFT IS FOR: {context}"]
    parts += [
        "",
        "DRAFT:",
        text,
        "",
        "FIX THESE DEVIATIONS:",
        flag_lines,
        "",
        "Return ONLY valid JSON:",
        '{"rewritten_content": "the full rewritten draft", "changes_applied": ["one line per change"]}',
    ]
    return "\n".join(parts)


async def rewrite_with_authenticity(
    text: str,
    fp: Fingerprint,
    generator: TextGenerator,
    max_attempts: int = 2,
    threshold: float = 70.0,
    context: Optional[str] = None,
    max_tokens: int = 1500,
    timeout: float = 40.0,
) -> RewriteResult:
    original = score_authenticity(text, fp)
    content, score = text, original
    attempts = 0

    while score.overall < threshold and score.flags and attempts < max_attempts:
        attempts += 1
        prompt = build_rewrite_prompt(content, fp, score.flags, context)
        try:
            raw = await generator.generate(prompt, max_tokens, timeout)
            rewritten = str(parse_json_object(raw).get("rewritten_content") or "").strip()
        except asyncio.TimeoutError:
            logger.warning(f"Rewrite attempt {attempts} timed out after {timeout}s")
            break
        except (GenerationError, ValueError) as e:
            logger.warning(f"Rewrite attempt {attempts} failed: {e}")
            break

        if not rewritten:
            logger.warning(f"Rewrite attempt {attempts} returned no content")
            break

        new_score = score_authenticity(rewritten, fp)
        logger.info(f"Rewrite attempt {attempts}: {score.overall} -> {new_score.overall}")
        if new_score.overall <= score.overall:
            break
        content, score = rewritten, new_score

    return RewriteResult(
        content=content,
        score=score,
        original_score=original,
        attempts=attempts,
        improved=score.overall > original.overall,
    )
