"""
Unit tests for phone normalization.
"""
import pytest

from app.core.errors import InvalidPhoneNumber
from app.utils.phone import normalize_phone, try_normalize_phone


class TestNormalizePhone:
    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "0712345678",
        "+254712345678",
        "254712345678",
        "712345678",
        "0712 345 678",
        254712345678,
    ])
    def test_common_formats_normalize(self, raw) -> None:
        assert normalize_phone(raw) == "254712345678"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["12345", "07123456789", "abc", "", None])
    def test_invalid_numbers_raise(self, raw) -> None:
        with pytest.raises(InvalidPhoneNumber) as exc:
            normalize_phone(raw)
        assert exc.value.field == "phone"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [
        "0\u0667\u0661\u0662\u0663\u0664\u0665\u0666\u0667\u0668",
        "254\u0967\u0967\u0968\u0969\u096a\u096b\u096c\u096d\u096e",
    ])
    def test_non_ascii_digits_raise(self, raw) -> None:
        with pytest.raises(InvalidPhoneNumber):
            normalize_phone(raw)

    @pytest.mark.unit
    def test_other_country_code(self) -> None:
        assert normalize_phone("0803123456", country_code="234") == "234803123456"

    @pytest.mark.unit
    def test_try_normalize_keeps_unparseable_value(self) -> None:
        """Payer data from gateways is kept even when it is not a local number."""
        assert try_normalize_phone("0712345678") == "254712345678"
        assert try_normalize_phone("+1 415 555 0100") == "+1 415 555 0100"
        assert try_normalize_phone(None) is None
