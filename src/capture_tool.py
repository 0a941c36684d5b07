"""Handler for the window capture tool: enumerate, disambiguate, capture, analyze."""
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, List, Optional

from analysis_cache import AnalysisCache, fingerprint, make_key
from errors import HostCapabilityError
from host import HostCapabilities
from logging_utils import logger
from models import CAPTURE_TOOL, AnalysisResult, CaptureResult, TargetCandidate, ToolResult
from target_resolver import (
    TargetResolver,
    derive_display_name,
    format_candidate_list,
    resolve_from_candidates,
)

SELECTION_INSTRUCTION = (
    "Present the windows exactly as shown in the 'message' field. Do not reconstruct the list "
    "from the windows array and do not add file names or app suffixes."
)
MAX_RECOGNIZED_TEXT = 4000


def _failure(call_id: Optional[str], error: str, **extra: Any) -> ToolResult:
    payload: Dict[str, Any] = {"success": False, "error": error}
    payload.update(extra)
    return ToolResult(name=CAPTURE_TOOL, call_id=call_id, payload=payload)


def selection_message(process_name: str, candidates: List[TargetCandidate], reason: Optional[str] = None) -> str:
    listing = format_candidate_list(candidates)
    if len(candidates) == 1:
        message = f"I found 1 window:\n\n{listing}\n\nWould you like me to focus on this window?"
    else:
        message = (
            f"I found {len(candidates)} windows:\n\n{listing}\n\n"
            f"Which one would you like me to focus on? Please specify by number "
            f"(1-{len(candidates)}) or by window name."
        )
    return f"{reason.strip()}\n\n{message}" if reason else message


class CaptureToolHandler:
    """Runs ``capture_window_with_ocr`` calls against the host."""

    def __init__(
        self,
        host: HostCapabilities,
        resolver: TargetResolver,
        analysis_cache: AnalysisCache,
    ) -> None:
        self.host = host
        self.resolver = resolver
        self.analysis_cache = analysis_cache

    async def enumerate(self, process_name: str) -> List[TargetCandidate]:
        """Fresh enumeration; non-empty results replace the cached list for the process."""
        raw = await self.host.enumerate_targets(process_name)
        candidates = [
            candidate
            if candidate.display_name
            else replace(candidate, display_name=derive_display_name(candidate.title, candidate.process_name))
            for candidate in raw
        ]
        logger.info(
            "Enumerated windows",
            extra={"extra": {"process_name": process_name, "count": len(candidates)}},
        )
        self.resolver.remember(process_name, candidates)
        return candidates

    async def handle(self, arguments: Dict[str, Any], call_id: Optional[str] = None) -> ToolResult:
        process_name = str(arguments.get("process_name") or "").strip()
        window_title = str(arguments.get("window_title") or "").strip()

        try:
            if window_title:
                resolved = self.resolver.resolve(process_name or None, window_title)
                if resolved is not None:
                    return await self._capture(resolved.process_name, resolved.candidate.title, call_id)

            if not process_name:
                return _failure(
                    call_id,
                    "process_name is required unless window_title matches a window listed earlier.",
                )

            candidates = await self.enumerate(process_name)
            if not candidates:
                return _failure(
                    call_id,
                    f'No windows found for process "{process_name}". Please check if the application is running.',
                    windows=[],
                )

            if window_title:
                match = resolve_from_candidates(candidates, window_title)
                if match is not None:
                    return await self._capture(process_name, match[0].title, call_id)
                if len(candidates) > 1:
                    reason = f'I couldn\'t match "{window_title}" to an open window.'
                    return self._selection(process_name, candidates, call_id, reason)

            if len(candidates) == 1:
                return await self._capture(process_name, candidates[0].title, call_id)
            return self._selection(process_name, candidates, call_id)
        except HostCapabilityError as exc:
            logger.error(
                "Capture tool failed",
                extra={"extra": {"process_name": process_name, "window_title": window_title, "error": str(exc)}},
            )
            return _failure(call_id, str(exc))

    def _selection(
        self,
        process_name: str,
        candidates: List[TargetCandidate],
        call_id: Optional[str],
        reason: Optional[str] = None,
    ) -> ToolResult:
        return _failure(
            call_id,
            "Multiple windows found; the user must choose one.",
            multiple_windows_found=True,
            message=selection_message(process_name, candidates, reason),
            instruction=SELECTION_INSTRUCTION,
            windows=[
                {
                    "title": candidate.title,
                    "display_name": candidate.display_name,
                    "process_name": candidate.process_name,
                    "is_active": candidate.is_active,
                }
                for candidate in candidates
            ],
        )

    async def _capture(self, process_name: str, title: str, call_id: Optional[str]) -> ToolResult:
        capture = await self.host.capture_and_recognize(process_name, title)
        if not capture.content_hash:
            capture.content_hash = fingerprint(capture.image_base64)

        analysis = await self._analysis_for(capture)
        recognized_text = capture.recognized_text or ""
        payload: Dict[str, Any] = {
            "success": True,
            "process_name": capture.process_name or process_name,
            "window_title": capture.title or title,
            "recognized_text": recognized_text[:MAX_RECOGNIZED_TEXT],
            "analysis": analysis.to_dict() if analysis else None,
            "message": f'Captured "{capture.title or title}" from {capture.process_name or process_name}.',
        }
        logger.info(
            "Window captured",
            extra={
                "extra": {
                    "process_name": payload["process_name"],
                    "window_title": payload["window_title"],
                    "has_analysis": analysis is not None,
                }
            },
        )
        return ToolResult(name=CAPTURE_TOOL, call_id=call_id, payload=payload, image_base64=capture.image_base64)

    async def _analysis_for(self, capture: CaptureResult) -> Optional[AnalysisResult]:
        key = make_key(capture.title, capture.process_name, capture.content_hash)
        cached = self.analysis_cache.get(key)
        if cached is not None:
            return cached
        try:
            analysis = await self.host.analyze(capture)
        except Exception as exc:
            logger.warning(
                "Window analysis failed",
                extra={"extra": {"title": capture.title, "error": str(exc)}},
            )
            return None
        if analysis is not None:
            self.analysis_cache.put(key, analysis)
        return analysis
