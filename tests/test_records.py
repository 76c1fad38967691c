"""Tests for the canonical record clients. No real HTTP calls are made."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from acad_verify.errors import NotFound, RecordServiceError, Timeout
from acad_verify.models import CanonicalRecord
from acad_verify.records import INVALID_ID_MESSAGE, HttpRecordClient, InMemoryRecordStore

BACKEND_CERT = {
    "id": "abc1234567",
    "name": "Jane Doe",
    "course": "BSc CS",
    "year": 2024,
    "grade": "A",
    "issuedBy": "Registrar",
    "institution": "University of Technology",
    "issuedAt": "2024-06-01T10:00:00.000Z",
    "revoked": False,
    "transactionHash": "0x9f1c",
}


def _make_mock_response(status_code=200, json_data=None):
    resp = MagicMock()
    resp.status_code = status_code
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
    return resp


@pytest.fixture
def client():
    return HttpRecordClient("https://registrar.example/", timeout=5.0)


# ---------------------------------------------------------------------------
# HttpRecordClient
# ---------------------------------------------------------------------------
class TestHttpRecordClient:

    def test_valid_certificate(self, client) -> None:
        resp = _make_mock_response(json_data={"valid": True, "status": "Authentic", "certificate": BACKEND_CERT})
        with patch("acad_verify.records.httpx.get", return_value=resp) as get:
            record = client.fetch("abc1234567")

        get.assert_called_once_with("https://registrar.example/certificates/verify/abc1234567",
                                    headers={}, timeout=5.0)
        assert record.recipient_name == "Jane Doe"
        assert record.title == "BSc CS"
        assert record.year == "2024"
        assert record.issuer_name == "Registrar"
        assert record.transaction_hash == "0x9f1c"
        assert record.status == "valid"
        assert record.issued_at.year == 2024

    def test_caller_timeout_overrides_default(self, client) -> None:
        resp = _make_mock_response(json_data={"valid": True, "certificate": BACKEND_CERT})
        with patch("acad_verify.records.httpx.get", return_value=resp) as get:
            client.fetch("abc1234567", timeout=1.5)
        assert get.call_args.kwargs["timeout"] == 1.5

    def test_revoked_certificate_returns_record(self, client) -> None:
        body = {
            "valid": False,
            "status": "Revoked",
            "error": "This certificate has been officially revoked by the issuing institution.",
            "certificate": dict(BACKEND_CERT, revoked=True),
        }
        with patch("acad_verify.records.httpx.get", return_value=_make_mock_response(json_data=body)):
            record = client.fetch("abc1234567")
        assert record.is_revoked

    def test_404_is_not_found_with_server_message(self, client) -> None:
        resp = _make_mock_response(404, {"valid": False, "error": "Certificate not found"})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            with pytest.raises(NotFound) as exc:
                client.fetch("ffffffffff")
        assert exc.value.message == "Certificate not found"

    def test_body_without_certificate_is_not_found(self, client) -> None:
        resp = _make_mock_response(json_data={"valid": False, "error": "No such certificate"})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            with pytest.raises(NotFound) as exc:
                client.fetch("ffffffffff")
        assert exc.value.message == "No such certificate"

    def test_malformed_id_is_rejected_without_request(self, client) -> None:
        with patch("acad_verify.records.httpx.get") as get:
            with pytest.raises(NotFound) as exc:
                client.fetch("../admin")
        get.assert_not_called()
        assert exc.value.message == INVALID_ID_MESSAGE

    def test_timeout(self, client) -> None:
        with patch("acad_verify.records.httpx.get", side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(Timeout) as exc:
                client.fetch("abc1234567", timeout=2.0)
        assert exc.value.retryable is True
        assert exc.value.timeout == 2.0

    def test_connection_error(self, client) -> None:
        with patch("acad_verify.records.httpx.get", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(RecordServiceError):
                client.fetch("abc1234567")

    def test_server_error(self, client) -> None:
        resp = _make_mock_response(500, {"error": "boom"})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            with pytest.raises(RecordServiceError):
                client.fetch("abc1234567")

    def test_html_error_page(self, client) -> None:
        with patch("acad_verify.records.httpx.get", return_value=_make_mock_response(200)):
            with pytest.raises(RecordServiceError):
                client.fetch("abc1234567")

    def test_every_fetch_hits_the_service(self, client) -> None:
        resp = _make_mock_response(json_data={"valid": True, "certificate": BACKEND_CERT})
        with patch("acad_verify.records.httpx.get", return_value=resp) as get:
            client.fetch("abc1234567")
            client.fetch("abc1234567")
        assert get.call_count == 2


# ---------------------------------------------------------------------------
# InMemoryRecordStore
# ---------------------------------------------------------------------------
class TestInMemoryRecordStore:

    def test_fetch_and_not_found(self, store, jane_record) -> None:
        assert store.fetch("abc1234567") == jane_record
        with pytest.raises(NotFound):
            store.fetch("ffffffffff")

    def test_revoke(self, store) -> None:
        store.revoke("abc1234567")
        assert store.fetch("abc1234567").is_revoked

    def test_from_json_file_list(self, tmp_path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps([BACKEND_CERT]))
        store = InMemoryRecordStore.from_json_file(path)
        assert len(store) == 1
        assert store.fetch("abc1234567").title == "BSc CS"

    def test_from_json_file_mapping(self, tmp_path) -> None:
        path = tmp_path / "records.json"
        path.write_text(json.dumps({"0123456789": {"recipientName": "A", "title": "B"}}))
        store = InMemoryRecordStore.from_json_file(path)
        assert store.fetch("0123456789").recipient_name == "A"


class TestCanonicalRecordMapping:

    def test_frontend_keys(self) -> None:
        record = CanonicalRecord.from_dict({
            "id": "abc1234567", "recipientName": "Jane Doe", "title": "BSc CS",
            "issuerName": "Registrar", "status": "revoked", "registrationNumber": "REG-001",
        })
        assert record.is_revoked
        assert record.expected_registration_number == "REG-001"

    def test_round_trip(self, jane_record) -> None:
        assert CanonicalRecord.from_dict(jane_record.to_dict()) == jane_record

    def test_missing_id(self) -> None:
        with pytest.raises(ValueError):
            CanonicalRecord.from_dict({"name": "Jane"})


# ---------------------------------------------------------------------------
# Record bodies as the certificate backend stores them
# ---------------------------------------------------------------------------
class TestBackendRecordShapes:

    def test_locale_issue_date(self, client) -> None:
        cert = {"id": "abc1234567", "name": "Jane Doe", "course": "BSc CS",
                "revoked": False, "issuedAt": "6/1/2024"}
        resp = _make_mock_response(json_data={"valid": True, "certificate": cert})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            record = client.fetch("abc1234567")
        assert record.recipient_name == "Jane Doe"
        assert record.issued_at.year == 2024
        assert record.issued_at.month == 6

    def test_unparseable_issue_date_is_dropped(self, client) -> None:
        cert = {"id": "abc1234567", "name": "Jane Doe", "course": "BSc CS", "issuedAt": "sometime in June"}
        resp = _make_mock_response(json_data={"valid": True, "certificate": cert})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            record = client.fetch("abc1234567")
        assert record.issued_at is None

    def test_malformed_certificate_is_service_error(self, client) -> None:
        resp = _make_mock_response(json_data={"valid": True, "certificate": {"name": "Jane Doe"}})
        with patch("acad_verify.records.httpx.get", return_value=resp):
            with pytest.raises(RecordServiceError) as exc:
                client.fetch("abc1234567")
        assert exc.value.retryable is True

    def test_pipeline_verdict_for_locale_date(self, client, history) -> None:
        from acad_verify.models import Outcome
        from acad_verify.pipeline import VerificationPipeline

        cert = {"id": "abc1234567", "name": "Jane Doe", "course": "BSc CS",
                "revoked": False, "issuedAt": "6/1/2024"}
        resp = _make_mock_response(json_data={"valid": True, "certificate": cert})
        with patch("acad_verify.records.httpx.get", return_value=resp), \
                VerificationPipeline(client, history=history) as pipeline:
            verdict = pipeline.verify_identifier("abc1234567", caller_id="hr")
        assert verdict.outcome is Outcome.AUTHENTIC
        assert history.count("hr") == 1

    def test_pipeline_verdict_for_malformed_record(self, client) -> None:
        from acad_verify.models import Outcome
        from acad_verify.pipeline import VerificationPipeline

        resp = _make_mock_response(json_data={"valid": True, "certificate": {"name": "Jane Doe"}})
        with patch("acad_verify.records.httpx.get", return_value=resp), \
                VerificationPipeline(client) as pipeline:
            verdict = pipeline.verify_identifier("abc1234567")
        assert verdict.outcome is Outcome.INVALID
        assert verdict.retryable is True
