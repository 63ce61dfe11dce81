import pytest

from backend.punchlist.messaging.phone import is_valid_phone, normalize_phone, phone_key


@pytest.mark.parametrize(
    "raw",
    [
        "+1 (555) 123-4567",
        "555-123-4567",
        "5551234567",
        "15551234567",
        "whatsapp:+15551234567",
        "  (555) 123 4567  ",
    ],
)
def test_domestic_formats_share_one_key(raw):
    assert phone_key(raw) == "5551234567"


def test_whatsapp_prefix_sets_channel_and_reply_address():
    phone = normalize_phone("whatsapp:+15551234567")
    assert phone.channel == "whatsapp"
    assert phone.e164 == "+15551234567"
    assert phone.send_to == "whatsapp:+15551234567"


def test_sms_reply_address_is_e164():
    phone = normalize_phone("555.123.4567")
    assert phone.channel == "sms"
    assert phone.send_to == "+15551234567"
    assert phone.domestic is True


def test_international_number_keeps_country_code_in_key():
    phone = normalize_phone("+44 20 7946 0958")
    assert phone.domestic is False
    assert phone.key == "442079460958"
    assert phone.e164 == "+442079460958"


def test_other_default_country_code():
    phone = normalize_phone("+44 7911 123456", default_country_code="44")
    assert phone.domestic is True
    assert phone.key == "7911123456"


@pytest.mark.parametrize("raw", ["", "abc", "12345", "whatsapp:"])
def test_rejects_non_numbers(raw):
    with pytest.raises(ValueError):
        normalize_phone(raw)
    assert is_valid_phone(raw) is False


def test_normalization_is_idempotent_on_e164():
    first = normalize_phone("(555) 123-4567")
    again = normalize_phone(first.e164)
    assert again == first
