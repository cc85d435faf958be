"""Tests for tax id (CUIT) validation and extraction."""

import pytest

from conftest import make_certificate, make_key, make_name
from credentials.certificates.errors import InvalidTaxIdError, TaxIdNotFoundError
from credentials.certificates.tax_id import (
    TAX_ID_STRATEGIES,
    clean_explicit_tax_id,
    compute_check_digit,
    extract_tax_id,
    from_rendered_issuer,
    from_subject_common_name,
    from_subject_serial_number,
    is_valid_tax_id,
    normalize_tax_id,
    resolve_tax_id,
)


class TestCheckDigit:
    """Tests for the modulus-11 check digit."""

    def test_valid_tax_id(self):
        assert is_valid_tax_id("20123456786")

    def test_wrong_check_digit(self):
        assert not is_valid_tax_id("20123456787")

    def test_result_eleven_maps_to_zero(self):
        """Sum divisible by 11 gives check digit 0."""
        assert compute_check_digit("2000000040") == 0
        assert is_valid_tax_id("20000000400")

    def test_result_ten_maps_to_nine(self):
        assert compute_check_digit("2000000001") == 9
        assert is_valid_tax_id("20000000019")

    def test_dashes_and_spaces_are_ignored(self):
        assert normalize_tax_id("20-12345678-6") == "20123456786"
        assert is_valid_tax_id("20-12345678-6")
        assert is_valid_tax_id(" 20 12345678 6 ")

    @pytest.mark.parametrize("value", ["", "2012345678", "201234567861", "2012345678A"])
    def test_wrong_shape_is_invalid(self, value):
        assert not is_valid_tax_id(value)

    def test_sample_tax_id_fails_checksum(self):
        """A well-formed id can still carry a wrong check digit."""
        assert not is_valid_tax_id("30716539685")
        assert is_valid_tax_id("30716539683")


class TestCleanExplicitTaxId:
    """Tests for caller-supplied tax ids."""

    def test_strips_non_digits(self):
        assert clean_explicit_tax_id("30-71653968-5") == "30716539685"

    def test_rejects_wrong_length(self):
        with pytest.raises(InvalidTaxIdError, match="11 digits"):
            clean_explicit_tax_id("123")


class TestExtraction:
    """Tests for the ordered extraction strategies."""

    @pytest.fixture(scope="class")
    def key(self):
        return make_key()

    def test_serial_number_wins_over_common_name(self, key):
        certificate = make_certificate(
            key,
            subject=make_name(common_name="CUIT 20123456786", serial_number="CUIT 30716539685"),
        )

        match = extract_tax_id(certificate)

        assert match.value == "30716539685"
        assert match.source == "subject_serial_number"

    def test_common_name_used_without_serial_number(self, key):
        certificate = make_certificate(key, subject=make_name(common_name="CUIT 20123456786"))

        match = extract_tax_id(certificate)

        assert match.value == "20123456786"
        assert match.source == "subject_common_name"

    def test_known_attribute_scan_finds_user_id(self, key):
        certificate = make_certificate(
            key, subject=make_name(common_name="company", user_id="20123456786")
        )

        match = extract_tax_id(certificate)

        assert match.value == "20123456786"
        assert match.source == "subject_known_attributes"

    def test_issuer_is_last_resort(self, key):
        certificate = make_certificate(
            key,
            subject=make_name(common_name="company"),
            issuer=make_name(common_name="issuer", serial_number="CUIT 20123456786"),
        )

        assert from_subject_serial_number(certificate) is None
        assert from_subject_common_name(certificate) is None
        assert from_rendered_issuer(certificate) == "20123456786"
        assert extract_tax_id(certificate).source == "issuer"

    def test_no_tax_id_raises(self, key):
        certificate = make_certificate(key, subject=make_name(common_name="company"))

        with pytest.raises(TaxIdNotFoundError):
            extract_tax_id(certificate)

    def test_custom_strategy_order(self, key):
        certificate = make_certificate(
            key,
            subject=make_name(common_name="CUIT 20123456786", serial_number="CUIT 30716539685"),
        )
        common_name_first = tuple(reversed(TAX_ID_STRATEGIES[:2]))

        assert extract_tax_id(certificate, common_name_first).value == "20123456786"

    def test_explicit_value_preferred(self, key):
        certificate = make_certificate(key)

        match = resolve_tax_id(certificate, explicit="20-12345678-6")

        assert match.value == "20123456786"
        assert match.source == "explicit"
