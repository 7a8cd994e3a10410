"""Tests for phone number normalization."""

import pytest

from gateway.core.errors import InvalidRecipient
from gateway.core.messaging.recipient import normalize_phone, to_user_id


class TestNormalizePhone:

    @pytest.mark.parametrize(
        "phone,expected",
        [
            ("+51 987 654 321", "51987654321"),
            ("(51) 987-654-321", "51987654321"),
            ("5198765432", "5198765432"),
            ("123456789012345", "123456789012345"),
        ],
    )
    def test_valid_numbers(self, phone, expected):
        """Test valid numbers."""
        assert normalize_phone(phone) == expected

    @pytest.mark.parametrize("phone", [None, "", "   "])
    def test_missing(self, phone):
        """Test missing phone numbers."""
        with pytest.raises(InvalidRecipient):
            normalize_phone(phone)

    @pytest.mark.parametrize("phone", ["987654321", "1234567890123456", "+51 abc"])
    def test_wrong_length(self, phone):
        """Test wrong length."""
        with pytest.raises(InvalidRecipient):
            normalize_phone(phone)


def test_to_user_id():
    """Test building the network user id."""
    assert to_user_id("51987654321") == "51987654321@s.whatsapp.net"
