"""
Tests for the per-instance console, network, dialog and download capture state.
"""
from browser_control.browser.state import CaptureState, ConsoleLog, DialogPolicy, DownloadRecord, NetworkLog

from conftest import FakeClock


class TestConsoleLog:
    def test_records_and_filters(self):
        console = ConsoleLog(clock=FakeClock())
        console.record("log", "App started", source="https://example.com/app.js", line=3)
        console.record("warning", "Deprecated API")
        console.record("error", "Failed to load resource", source="https://cdn.example.com/lib.js")

        assert [m["text"] for m in console.query()] == ["App started", "Deprecated API", "Failed to load resource"]
        assert [m["text"] for m in console.query(level="error")] == ["Failed to load resource"]
        assert [m["text"] for m in console.query(text="deprecated")] == ["Deprecated API"]
        assert [m["text"] for m in console.query(source="cdn.example.com")] == ["Failed to load resource"]
        assert console.query()[0]["timestamp"] == 1_700_000_000.0

    def test_warn_and_warning_are_the_same_level(self):
        console = ConsoleLog()
        console.record("warn", "first")
        console.record("warning", "second")

        assert len(console.query(level="warn")) == 2
        assert console.counts() == {"warning": 2}

    def test_limit_keeps_the_most_recent(self):
        console = ConsoleLog()
        for n in range(5):
            console.record("log", f"message {n}")

        assert [m["text"] for m in console.query(limit=2)] == ["message 3", "message 4"]

    def test_buffer_is_bounded(self):
        console = ConsoleLog(max_entries=3)
        for n in range(5):
            console.record("log", f"message {n}")

        assert [m["text"] for m in console.query()] == ["message 2", "message 3", "message 4"]

    def test_paused_monitoring_drops_messages(self):
        console = ConsoleLog()
        console.monitoring = False

        assert console.record("log", "ignored") is False
        assert console.query() == []

    def test_clear_returns_the_count(self):
        console = ConsoleLog()
        console.record("log", "one")
        console.record("log", "two")

        assert console.clear() == 2
        assert console.query() == []


class TestNetworkLog:
    def fill(self):
        network = NetworkLog()
        network.record("https://example.com/", "get", "document", status=200, duration_ms=120.5)
        network.record("https://example.com/api/items", "POST", "fetch", status=201)
        network.record("https://example.com/api/missing", "GET", "XHR", status=404)
        network.record("https://cdn.example.com/app.js", "GET", "script", failure="net::ERR_ABORTED")
        return network

    def test_filters_combine(self):
        network = self.fill()

        assert len(network.query(url=r"/api/")) == 2
        assert network.query(method="post")[0]["status"] == 201
        assert network.query(status=404)[0]["url"].endswith("/missing")
        assert network.query(resource_type="xhr")[0]["resourceType"] == "XHR"
        assert network.query(url=r"/api/", method="GET")[0]["url"].endswith("/missing")

    def test_methods_are_upper_cased(self):
        network = self.fill()

        assert network.query()[0]["method"] == "GET"

    def test_summary_counts_failures_and_types(self):
        summary = self.fill().summary()

        assert summary["total"] == 4
        assert summary["failed"] == 2
        assert summary["byResourceType"]["fetch"] == 1

    def test_paused_monitoring_drops_requests(self):
        network = NetworkLog()
        network.monitoring = False

        assert network.record("https://example.com/", "GET", "document") is False
        assert network.summary()["total"] == 0


class TestDialogPolicy:
    def test_default_accepts_and_uses_the_prompt_default(self):
        dialogs = DialogPolicy()

        assert dialogs.respond("prompt", "Your name?", "Ada", timestamp=1.0) == (True, "Ada")
        assert dialogs.history[-1]["promptText"] == "Ada"

    def test_one_shot_response_wins_once(self):
        dialogs = DialogPolicy()
        dialogs.set_next(False)

        assert dialogs.respond("confirm", "Delete?") == (False, None)
        assert dialogs.respond("confirm", "Delete again?") == (True, None)

    def test_default_can_be_changed(self):
        dialogs = DialogPolicy()
        dialogs.set_default(True, "secret")

        assert dialogs.respond("prompt", "Password?") == (True, "secret")

    def test_dismissed_prompt_records_no_text(self):
        dialogs = DialogPolicy()
        dialogs.set_next(False, "ignored")
        dialogs.respond("prompt", "Name?")

        assert dialogs.history[-1]["accepted"] is False
        assert dialogs.history[-1]["promptText"] is None

    def test_info_reports_pending_and_last(self):
        dialogs = DialogPolicy()
        dialogs.respond("alert", "Saved", timestamp=5.0)
        dialogs.set_next(True, "yes")

        info = dialogs.info()

        assert info["pendingResponse"] == {"accept": True, "promptText": "yes"}
        assert info["lastDialog"]["message"] == "Saved"
        assert len(info["history"]) == 1


def test_capture_state_is_independent_per_instance():
    first, second = CaptureState(), CaptureState()
    first.console.record("log", "only here")
    first.downloads.append(DownloadRecord(file_name="a.csv", path="/tmp/a.csv", size=3))

    assert second.console.query() == []
    assert second.downloads == []
    assert first.downloads[0].to_dict()["fileName"] == "a.csv"
