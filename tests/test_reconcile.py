"""Tests for persistream.client.reconcile: live/persisted source selection."""

import pytest

from persistream.client.reconcile import (
    CompletionFlag,
    reconcile,
    synthesize_status,
    uses_persisted,
)
from persistream.schemas.stream import StreamBody, StreamStatus


class TestUsesPersisted:
    @pytest.mark.parametrize("completion", list(CompletionFlag))
    def test_non_driven_always_uses_persisted(self, completion):
        assert uses_persisted(False, completion)

    def test_driven_uses_live_until_failure(self):
        assert not uses_persisted(True, CompletionFlag.UNKNOWN)
        assert not uses_persisted(True, CompletionFlag.SUCCEEDED)
        assert uses_persisted(True, CompletionFlag.FAILED)


class TestSynthesizeStatus:
    def test_succeeded_is_done(self):
        assert synthesize_status(CompletionFlag.SUCCEEDED, "") == StreamStatus.DONE

    def test_failed_is_error(self):
        assert synthesize_status(CompletionFlag.FAILED, "partial") == StreamStatus.ERROR

    def test_unknown_with_text_is_streaming(self):
        assert synthesize_status(CompletionFlag.UNKNOWN, "Hi") == StreamStatus.STREAMING

    def test_unknown_without_text_is_pending(self):
        assert synthesize_status(CompletionFlag.UNKNOWN, "") == StreamStatus.PENDING


class TestReconcile:
    def test_driven_live_text(self):
        persisted = StreamBody(text="stale", status=StreamStatus.STREAMING)
        body = reconcile(True, CompletionFlag.UNKNOWN, "Hello ", persisted)
        assert body == StreamBody(text="Hello ", status=StreamStatus.STREAMING)

    def test_driven_success_ignores_persisted(self):
        persisted = StreamBody(text="Hello", status=StreamStatus.STREAMING)
        body = reconcile(True, CompletionFlag.SUCCEEDED, "Hello World!", persisted)
        assert body == StreamBody(text="Hello World!", status=StreamStatus.DONE)

    def test_driven_failure_switches_to_persisted(self):
        persisted = StreamBody(text="Hello World.", status=StreamStatus.ERROR)
        body = reconcile(True, CompletionFlag.FAILED, "Hello ", persisted)
        assert body == persisted

    def test_driven_failure_before_persisted_loads(self):
        body = reconcile(True, CompletionFlag.FAILED, "Hello ", None)
        assert body == StreamBody(text="Hello ", status=StreamStatus.ERROR)

    def test_observer_uses_persisted_verbatim(self):
        persisted = StreamBody(text="Shared.", status=StreamStatus.DONE)
        body = reconcile(False, CompletionFlag.UNKNOWN, "", persisted)
        assert body == persisted
        assert body is not persisted

    def test_observer_before_persisted_loads(self):
        body = reconcile(False, CompletionFlag.UNKNOWN, "", None)
        assert body == StreamBody(text="", status=StreamStatus.PENDING)
