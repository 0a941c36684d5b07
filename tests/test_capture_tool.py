"""Tests for capture_tool.py - Window capture tool handler."""
from unittest.mock import AsyncMock

import pytest

from analysis_cache import AnalysisCache
from capture_tool import CaptureToolHandler, selection_message
from host import LocalHost
from models import AnalysisResult, TargetCandidate
from target_resolver import TargetCache, TargetResolver


@pytest.fixture
def handler(fake_host, fake_clock):
    return CaptureToolHandler(
        fake_host,
        TargetResolver(TargetCache(clock=fake_clock)),
        AnalysisCache(clock=fake_clock),
    )


@pytest.fixture
def chrome_host(fake_host):
    fake_host.add_window("chrome", "GitHub - Google Chrome", "GitHub")
    fake_host.add_window("chrome", "Docs - Google Chrome", "Docs", is_active=True)
    return fake_host


@pytest.mark.unit
class TestSelectionMessage:
    """Test the user-facing window list."""

    def test_multiple_windows(self):
        """The list numbers windows and marks the active one."""
        candidates = [
            TargetCandidate("a", "Alpha", "chrome"),
            TargetCandidate("b", "Beta", "chrome", is_active=True),
        ]
        message = selection_message("chrome", candidates)
        assert message.startswith('I found 2 windows:\n\n1. "Alpha"\n2. "Beta" (currently active)')
        assert "(1-2)" in message

    def test_single_window_with_reason(self):
        """A reason is put ahead of the list."""
        message = selection_message("chrome", [TargetCandidate("a", "Alpha", "chrome")], reason="No match.")
        assert message.startswith("No match.\n\nI found 1 window:")


@pytest.mark.unit
class TestCaptureToolHandler:
    """Test enumerate, disambiguate and capture."""

    @pytest.mark.asyncio
    async def test_no_windows(self, handler, fake_host):
        """No windows means a failure and nothing cached."""
        result = await handler.handle({"process_name": "cursor"}, "call_1")
        assert result.payload == {
            "success": False,
            "error": 'No windows found for process "cursor". Please check if the application is running.',
            "windows": [],
        }
        assert fake_host.captures == []
        assert len(handler.analysis_cache) == 0
        assert len(handler.resolver.cache) == 0

    @pytest.mark.asyncio
    async def test_missing_process_name(self, handler):
        """A process name is required without a remembered list."""
        result = await handler.handle({}, "call_1")
        assert not result.succeeded
        assert "process_name is required" in result.payload["error"]

    @pytest.mark.asyncio
    async def test_single_window_captured(self, handler, fake_host):
        """A single window is captured directly."""
        fake_host.add_window("Cursor", "main.py - webshop - Cursor")
        result = await handler.handle({"process_name": "Cursor"}, "call_1")
        assert result.succeeded
        assert result.call_id == "call_1"
        assert result.payload["window_title"] == "main.py - webshop - Cursor"
        assert result.payload["recognized_text"] == "text of main.py - webshop - Cursor"
        assert result.image_base64 == "aW1hZ2U="

    @pytest.mark.asyncio
    async def test_display_names_derived(self, handler, fake_host):
        """Display names are derived from titles."""
        fake_host.add_window("Cursor", "main.py - webshop - Cursor")
        candidates = await handler.enumerate("Cursor")
        assert candidates[0].display_name == "webshop"

    @pytest.mark.asyncio
    async def test_multiple_windows_ask_for_selection(self, handler, chrome_host):
        """Several windows prompt the user to pick one."""
        result = await handler.handle({"process_name": "chrome"})
        assert result.payload["multiple_windows_found"] is True
        assert result.payload["message"].startswith("I found 2 windows:")
        assert [w["display_name"] for w in result.payload["windows"]] == ["GitHub", "Docs"]
        assert chrome_host.captures == []

    @pytest.mark.asyncio
    async def test_ordinal_selects_second_window(self, handler, chrome_host):
        """An ordinal picks the matching window."""
        result = await handler.handle({"process_name": "chrome", "window_title": "the second one"})
        assert result.succeeded
        assert chrome_host.captures == [("chrome", "Docs - Google Chrome")]

    @pytest.mark.asyncio
    async def test_unmatched_title_lists_windows(self, handler, chrome_host):
        """An unmatched title lists the windows."""
        result = await handler.handle({"process_name": "chrome", "window_title": "spreadsheet"})
        assert result.payload["message"].startswith('I couldn\'t match "spreadsheet" to an open window.')
        assert chrome_host.captures == []

    @pytest.mark.asyncio
    async def test_follow_up_uses_remembered_list(self, handler, chrome_host):
        """A follow-up pick reuses the remembered list."""
        await handler.handle({"process_name": "chrome"})
        result = await handler.handle({"window_title": "GitHub"})
        assert result.succeeded
        assert chrome_host.captures == [("chrome", "GitHub - Google Chrome")]
        assert chrome_host.enumerations == ["chrome"]

    @pytest.mark.asyncio
    async def test_analysis_is_cached(self, handler, fake_host):
        """Analysis of an unchanged capture is cached."""
        fake_host.add_window("Cursor", "main.py - webshop - Cursor")
        fake_host.analysis = AnalysisResult(application="Cursor", language="python")
        first = await handler.handle({"process_name": "Cursor"})
        second = await handler.handle({"process_name": "Cursor"})
        assert first.payload["analysis"]["language"] == "python"
        assert second.payload["analysis"] == first.payload["analysis"]
        assert fake_host.analyses == 1

    @pytest.mark.asyncio
    async def test_analysis_failure_still_captures(self, handler, fake_host):
        """A failed analysis does not fail the capture."""
        fake_host.add_window("Cursor", "main.py - webshop - Cursor")
        fake_host.analyze = AsyncMock(side_effect=RuntimeError("vision down"))
        result = await handler.handle({"process_name": "Cursor"})
        assert result.succeeded
        assert result.payload["analysis"] is None
        assert len(handler.analysis_cache) == 0

    @pytest.mark.asyncio
    async def test_host_errors_become_failures(self, fake_clock):
        """Host errors become failure results."""
        handler = CaptureToolHandler(LocalHost(), TargetResolver(TargetCache(clock=fake_clock)), AnalysisCache())
        result = await handler.handle({"process_name": "chrome"})
        assert result.payload == {"success": False, "error": "Window enumeration is not available on this host"}
