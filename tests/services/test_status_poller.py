"""
Tests for StatusPoller -- later verdicts from the Get Submission endpoint.
"""

import httpx
import pytest

from einvoice_kernel.domain.integration_config import StaticConfigSource
from einvoice_kernel.models.submission_record import SubmissionStatus
from einvoice_kernel.services.status_tracker import StatusTracker
from einvoice_kernel.services.submission_client import SubmissionClient
from einvoice_kernel.services.token_acquirer import TOKEN_PATH, TokenAcquirer
from einvoice_kernel.services.token_session import TokenSessionManager
from einvoice_kernel.services.token_store import TokenStore
from einvoice_services.status_poller import StatusPoller

S = SubmissionStatus


class Routes:
    """Maps request paths to responses; token requests always succeed."""

    def __init__(self):
        self.routes: dict[str, httpx.Response] = {}
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        self.calls.append(request.url.path)
        response = self.routes.get(request.url.path)
        if response is None:
            return httpx.Response(404, json={"code": "NOT_FOUND", "message": "no route"})
        return httpx.Response(response.status_code, content=response.content,
                              headers=response.headers)


@pytest.fixture
def routes():
    return Routes()


@pytest.fixture
def tracker(session, deterministic_clock):
    return StatusTracker(session, deterministic_clock)


@pytest.fixture
def poller(make_http, routes, tracker, deterministic_clock, sleeper, make_config):
    http = make_http(routes)
    source = StaticConfigSource(make_config(retry_enabled=False))
    store = TokenStore(deterministic_clock)
    tokens = TokenSessionManager(store, TokenAcquirer(http, store, deterministic_clock), source)
    client = SubmissionClient(http, tokens, source, tracker, deterministic_clock, sleep=sleeper)
    return StatusPoller(client, tracker)


def _submission(uid, *entries, overall="InProgress"):
    return httpx.Response(200, json={
        "submissionUid": uid,
        "overallStatus": overall,
        "documentCount": len(entries),
        "documentSummary": list(entries),
    })


class TestPollOnce:

    def test_nothing_to_poll(self, poller, routes):
        summary = poller.poll_once()
        assert summary.polled == 0
        assert routes.calls == []

    def test_valid_verdict(self, poller, routes, tracker):
        record = tracker.open_record("INV-1")
        tracker.mark_submitted(record, "SUB-1", "DOC-1")
        routes.routes["/api/v1.0/documentsubmissions/SUB-1"] = _submission(
            "SUB-1",
            {"uuid": "DOC-1", "internalId": "INV-1", "status": "Valid", "longId": "LONG-1"},
            overall="Valid",
        )

        summary = poller.poll_once()

        assert summary.polled == 1
        assert summary.updated == 1
        assert summary.transitions == {str(record.id): "valid"}
        assert record.status_enum is S.VALID
        assert record.long_id == "LONG-1"

    def test_still_in_progress(self, poller, routes, tracker):
        record = tracker.open_record("INV-1")
        tracker.mark_submitted(record, "SUB-1", "DOC-1")
        routes.routes["/api/v1.0/documentsubmissions/SUB-1"] = _submission(
            "SUB-1", {"uuid": "DOC-1", "status": "Submitted"}
        )
        summary = poller.poll_once()
        assert summary.unchanged == 1
        assert record.status_enum is S.SUBMITTED

    def test_invalid_attaches_validation_errors(self, poller, routes, tracker):
        record = tracker.open_record("INV-1")
        tracker.mark_submitted(record, "SUB-1", "DOC-1")
        routes.routes["/api/v1.0/documentsubmissions/SUB-1"] = _submission(
            "SUB-1", {"uuid": "DOC-1", "status": "Invalid"}, overall="Invalid"
        )
        routes.routes["/api/v1.0/documents/DOC-1/details"] = httpx.Response(200, json={
            "uuid": "DOC-1",
            "status": "Invalid",
            "validationResults": {
                "status": "Invalid",
                "validationSteps": [
                    {"status": "Valid", "name": "Step01-Structure Validator"},
                    {"status": "Invalid", "name": "Step03-Codes Validator",
                     "error": {"code": "CF404", "error": "Invalid TIN",
                               "innerError": []}},
                ],
            },
        })

        poller.poll_once()

        assert record.status_enum is S.INVALID
        assert record.error_code == "CF404"
        assert record.error_detail["message"] == "Invalid TIN"

    def test_queued_record_walks_through_submitted(self, poller, routes, tracker, captured_logs):
        record = tracker.open_record("INV-1")
        tracker.mark_queued(record, "SUB-Q")
        routes.routes["/api/v1.0/documentsubmissions/SUB-Q"] = _submission(
            "SUB-Q", {"uuid": "DOC-9", "internalId": "INV-1", "status": "Valid"}
        )

        poller.poll_once()

        assert record.status_enum is S.VALID
        assert record.document_uuid == "DOC-9"
        assert not any(r["message"] == "status_transition_rejected" for r in captured_logs())

    def test_matches_by_invoice_number(self, poller, routes, tracker):
        first = tracker.open_record("INV-1")
        second = tracker.open_record("INV-2")
        tracker.mark_queued(first, "SUB-B")
        tracker.mark_queued(second, "SUB-B")
        routes.routes["/api/v1.0/documentsubmissions/SUB-B"] = _submission(
            "SUB-B",
            {"uuid": "DOC-2", "internalId": "INV-2", "status": "Submitted"},
            {"uuid": "DOC-1", "internalId": "INV-1", "status": "Cancelled"},
        )

        summary = poller.poll_once()

        assert routes.calls == ["/api/v1.0/documentsubmissions/SUB-B"]
        assert summary.polled == 2
        assert first.document_uuid == "DOC-1"
        assert first.status_enum is S.CANCELLED
        assert second.status_enum is S.SUBMITTED
        assert second.document_uuid == "DOC-2"

    def test_authority_error_counted_not_raised(self, poller, routes, tracker, captured_logs):
        record = tracker.open_record("INV-1")
        tracker.mark_submitted(record, "SUB-1", "DOC-1")
        routes.routes["/api/v1.0/documentsubmissions/SUB-1"] = httpx.Response(503)

        summary = poller.poll_once()

        assert summary.errors == 1
        assert record.status_enum is S.SUBMITTED
        assert any(r["message"] == "submission_poll_failed" for r in captured_logs())

    def test_unlisted_document_unchanged(self, poller, routes, tracker):
        first = tracker.open_record("INV-1")
        second = tracker.open_record("INV-2")
        tracker.mark_submitted(first, "SUB-1", "DOC-1")
        tracker.mark_submitted(second, "SUB-1", "DOC-2")
        routes.routes["/api/v1.0/documentsubmissions/SUB-1"] = _submission(
            "SUB-1",
            {"uuid": "DOC-7", "internalId": "INV-7", "status": "Valid"},
            {"uuid": "DOC-8", "internalId": "INV-8", "status": "Valid"},
        )
        summary = poller.poll_once()
        assert summary.unchanged == 2
        assert first.status_enum is S.SUBMITTED
