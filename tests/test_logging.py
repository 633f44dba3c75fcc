from wchic.core.logging import mask_phone, mask_phone_numbers


def test_mask_phone_keeps_country_code_and_last_digits():
    assert mask_phone("+5519999998888") == "+55*******8888"
    assert mask_phone("5519999998888") == "55*******8888"


def test_mask_phone_leaves_short_and_non_string_values():
    assert mask_phone("12345") == "12345"
    assert mask_phone(None) is None


def test_processor_masks_only_phone_keys():
    event = mask_phone_numbers(None, "info", {"event": "whatsapp.send.ok", "to": "5519999998888", "lead_id": 7})
    assert event == {"event": "whatsapp.send.ok", "to": "55*******8888", "lead_id": 7}
