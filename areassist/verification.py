import json
import logging
from pathlib import Path
from typing import Optional

import google.generativeai as genai

from .config import get_settings

logger = logging.getLogger(__name__)

# Below this confidence an image is flagged for admin review
REVIEW_THRESHOLD = 60

_gemini_model = None

REPORT_IMAGE_PROMPT = """You are reviewing a photo attached to a citizen's civic issue report.

Reported category: {category}
Reported description: {description}

Step-by-Step Analysis Rubric:
1. IDENTIFY: List the visible objects related to urban infrastructure or public safety.
2. AUTHENTICITY: Decide whether this looks like a genuine on-site photograph (not a screenshot, stock image, meme or AI render).
3. RELEVANCE: Decide whether the photo shows a problem matching the reported category.

You MUST respond with ONLY a valid JSON object:
{{
  "reasoning": "Briefly explain the visual evidence.",
  "authentic": <true|false>,
  "matches_category": <true|false>,
  "confidence": <0-100 float>
}}
"""

RESOLUTION_PROMPT = """You are checking a volunteer's proof that a civic issue was fixed.

The first image is the original report photo, the second was taken after the work.
Reported category: {category}

Decide whether both photos show the same place and whether the problem visible in the
first photo is no longer present in the second.

You MUST respond with ONLY a valid JSON object:
{{
  "reasoning": "Briefly explain the visual evidence.",
  "same_location": <true|false>,
  "issue_resolved": <true|false>,
  "confidence": <0-100 float>
}}
"""


def _get_gemini_model():
    """Lazy-load and cache the Gemini model."""
    global _gemini_model
    if _gemini_model is None:
        settings = get_settings()
        genai.configure(api_key=settings.gemini_api_key)
        _gemini_model = genai.GenerativeModel(settings.gemini_model)
    return _gemini_model


def _parse_json(text: str) -> dict:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1]
        text = text.rsplit("```", 1)[0]
        text = text.strip()
    return json.loads(text)


def _ask_gemini(prompt: str, image_paths) -> dict:
    model = _get_gemini_model()
    files = [genai.upload_file(str(p)) for p in image_paths]
    response = model.generate_content(
        [prompt, *files],
        generation_config=genai.types.GenerationConfig(
            temperature=0.1,
            max_output_tokens=500,
        ),
    )
    return _parse_json(response.text)


def _skipped(reason: str) -> dict:
    return {"status": "skipped", "confidence": None, "needs_review": False, "report": {"reasoning": reason}}


def _errored(error: Exception) -> dict:
    return {"status": "error", "confidence": None, "needs_review": True, "report": {"reasoning": str(error)}}


def _judge(result, *checks) -> dict:
    """Turn a model answer into a verdict; raises on a malformed answer."""
    if not isinstance(result, dict):
        raise ValueError(f"Expected a JSON object, got {type(result).__name__}")
    confidence = float(result.get("confidence", 0))
    ok = all(bool(result.get(key)) for key in checks)
    status = "verified" if ok and confidence >= REVIEW_THRESHOLD else "flagged"
    return {"status": status, "confidence": confidence, "needs_review": status != "verified", "report": result}


def verify_issue_image(image_path: Optional[Path], category: str, description: str) -> dict:
    """
    Check a report photo for authenticity and relevance.
    Returns: {status, confidence, needs_review, report}
    """
    if not get_settings().gemini_api_key:
        return _skipped("Image verification is not configured.")
    if image_path is None or not image_path.exists():
        return _skipped("Image is not stored locally.")

    try:
        result = _ask_gemini(
            REPORT_IMAGE_PROMPT.format(category=category, description=description[:500]),
            [image_path],
        )
        verdict = _judge(result, "authentic", "matches_category")
    except Exception as e:
        logger.error(f"[Verification] Report image check failed: {e}")
        return _errored(e)

    logger.info(f"[Verification] Report image {verdict['status']} ({verdict['confidence']}% confidence)")
    return verdict


def verify_resolution_image(before_path: Optional[Path], after_path: Optional[Path], category: str) -> dict:
    """Compare the report photo with the volunteer's after photo."""
    if not get_settings().gemini_api_key:
        return _skipped("Image verification is not configured.")
    paths = [p for p in (before_path, after_path) if p is not None and p.exists()]
    if len(paths) != 2:
        return _skipped("Both images must be stored locally.")

    try:
        result = _ask_gemini(RESOLUTION_PROMPT.format(category=category), paths)
        verdict = _judge(result, "same_location", "issue_resolved")
    except Exception as e:
        logger.error(f"[Verification] Resolution check failed: {e}")
        return _errored(e)

    logger.info(f"[Verification] Resolution {verdict['status']} ({verdict['confidence']}% confidence)")
    return verdict
