"""Vision-model description of captured windows."""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

import openai

from config import config
from logging_utils import logger
from models import AnalysisResult, CaptureResult

MAX_OCR_CHARS = 4000

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_analysis_prompt(capture: CaptureResult) -> str:
    if capture.recognized_text:
        ocr_text = capture.recognized_text[:MAX_OCR_CHARS]
        if len(capture.recognized_text) > MAX_OCR_CHARS:
            ocr_text += "..."
        ocr_section = f"- OCR text: {len(capture.recognized_text)} characters\n\nOCR TEXT:\n{ocr_text}"
    else:
        ocr_section = "- OCR text: not available"

    return (
        "You are a window analysis agent. Analyze this window capture (image plus OCR text).\n\n"
        "Use ONLY what is visible in the image and OCR text. Do not infer names that are not shown.\n\n"
        "WINDOW METADATA:\n"
        f"- Window title: {capture.title}\n"
        f"- Process name: {capture.process_name}\n"
        f"{ocr_section}\n\n"
        "Respond with ONLY a JSON object with these fields:\n"
        "{\n"
        '  "window_type": "code_editor|browser|terminal|document|other",\n'
        '  "application": "string",\n'
        '  "content_type": "string",\n'
        '  "language": "string or null",\n'
        '  "file_path": "string or null",\n'
        '  "ui_elements": ["string"],\n'
        '  "visible_features": ["string"],\n'
        '  "is_editing": false, "has_errors": false, "has_warnings": false,\n'
        '  "is_terminal": false, "is_browser": false,\n'
        '  "detailed_description": "what the window shows, using exact visible names"\n'
        "}"
    )


def strip_json_fences(content: str) -> str:
    return _JSON_FENCE.sub("", content.strip()).strip()


def parse_analysis(content: Optional[str], capture: CaptureResult) -> Optional[AnalysisResult]:
    """Validate a model reply into an AnalysisResult; None when it is not a JSON object."""
    if not content:
        return None
    try:
        data: Dict[str, Any] = json.loads(strip_json_fences(content))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    def text(field: str, default: str) -> str:
        value = data.get(field)
        return value if isinstance(value, str) and value else default

    def optional_text(field: str) -> Optional[str]:
        value = data.get(field)
        return value if isinstance(value, str) and value else None

    def strings(field: str) -> list[str]:
        value = data.get(field)
        return [str(item) for item in value] if isinstance(value, list) else []

    def flag(field: str) -> bool:
        return data.get(field) is True

    return AnalysisResult(
        window_type=text("window_type", "unknown"),
        application=text("application", capture.process_name or "unknown"),
        content_type=text("content_type", "unknown"),
        language=optional_text("language"),
        file_path=optional_text("file_path"),
        ui_elements=strings("ui_elements"),
        visible_features=strings("visible_features"),
        is_editing=flag("is_editing"),
        has_errors=flag("has_errors"),
        has_warnings=flag("has_warnings"),
        is_terminal=flag("is_terminal"),
        is_browser=flag("is_browser"),
        detailed_description=text("detailed_description", ""),
    )


class VisionAnalyzer:
    """Asks a vision-capable chat model to describe a capture."""

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None, model: Optional[str] = None) -> None:
        self.client = client or openai.AsyncOpenAI(
            timeout=config.llm.timeout, max_retries=config.llm.max_retries
        )
        self.model = model or config.llm.analysis_model

    async def analyze(self, capture: CaptureResult) -> Optional[AnalysisResult]:
        image = capture.image_base64.split(",", 1)[-1]
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": build_analysis_prompt(capture)},
                            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{image}"}},
                        ],
                    }
                ],
            )
        except openai.OpenAIError as exc:
            logger.warning(
                "Window analysis call failed",
                extra={"extra": {"title": capture.title, "error": str(exc)}},
            )
            return None

        if not response.choices:
            return None
        result = parse_analysis(response.choices[0].message.content, capture)
        if result is None:
            logger.warning("Window analysis returned unusable content", extra={"extra": {"title": capture.title}})
        return result
