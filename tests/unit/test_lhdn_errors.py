"""
Unit tests for authority error envelope parsing and the message catalogue.
"""

import pytest

from einvoice_kernel.domain.lhdn_errors import (
    LHDN_ERROR_MESSAGES,
    MISSING_TAX_TOTAL_MESSAGE,
    UNKNOWN_ERROR_CODE,
    describe,
    parse_authority_error,
    parse_rejected_document,
)


class TestDescribe:

    def test_known_code(self):
        assert describe("DS302") == LHDN_ERROR_MESSAGES["DS302"]

    @pytest.mark.parametrize("code", [None, "", "NOPE"])
    def test_unknown_code(self, code):
        assert describe(code) is None


class TestParseAuthorityError:

    def test_nested_error_envelope(self):
        info = parse_authority_error({
            "error": {
                "code": "CF321",
                "message": "Issuance date time value not valid",
                "details": [{"code": "CF321", "message": "too old", "target": "IssueDate"}],
            }
        })
        assert info.code == "CF321"
        assert info.message == "Issuance date time value not valid"
        assert info.user_message == LHDN_ERROR_MESSAGES["CF321"]
        assert info.details[0]["target"] == "IssueDate"

    def test_flat_envelope(self):
        info = parse_authority_error({"code": "TIN_MISMATCH", "message": "bad tin"})
        assert info.code == "TIN_MISMATCH"
        assert info.user_message == LHDN_ERROR_MESSAGES["TIN_MISMATCH"]

    def test_uncatalogued_code_keeps_authority_text(self):
        info = parse_authority_error({"code": "XYZ1", "message": "something odd"})
        assert info.code == "XYZ1"
        assert info.message == "something odd"
        assert info.user_message is None

    def test_detail_code_used_for_user_message(self):
        info = parse_authority_error({
            "code": "VALIDATION",
            "message": "failed",
            "details": [{"code": "CF404", "message": "bad id"}],
        })
        assert info.user_message == LHDN_ERROR_MESSAGES["CF404"]

    def test_missing_tax_total_detected(self):
        info = parse_authority_error({
            "code": "CF999",
            "message": 'Schema error: "TaxTotal": [] not allowed',
        })
        assert info.user_message == MISSING_TAX_TOTAL_MESSAGE

    def test_non_dict_body(self):
        info = parse_authority_error("Bad Gateway")
        assert info.code == UNKNOWN_ERROR_CODE
        assert info.message == "Bad Gateway"

    def test_empty_body_uses_default(self):
        info = parse_authority_error(None, default_message="nothing came back")
        assert info.code == UNKNOWN_ERROR_CODE
        assert info.message == "nothing came back"

    def test_string_details_normalised(self):
        info = parse_authority_error({"code": "X", "message": "m", "details": "plain"})
        assert info.details == [{"message": "plain"}]

    def test_as_detail_is_json_shaped(self):
        detail = parse_authority_error({"code": "DS302", "message": "dup"}).as_detail()
        assert set(detail) == {"code", "message", "user_message", "target", "details"}


class TestParseRejectedDocument:

    def test_rejected_entry(self):
        info = parse_rejected_document({
            "invoiceCodeNumber": "INV-1",
            "error": {"code": "DS302", "message": "Duplicate submission"},
        })
        assert info.code == "DS302"
        assert info.target == "INV-1"
        assert info.user_message == LHDN_ERROR_MESSAGES["DS302"]

    def test_rejected_entry_without_error(self):
        info = parse_rejected_document({"invoiceCodeNumber": "INV-2"})
        assert info.code == UNKNOWN_ERROR_CODE
        assert info.target == "INV-2"
