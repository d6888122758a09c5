from shopfloor.scan_classifier import (
    ScanKind, build_barcode_id, classify, normalize_token, parse_barcode,
)


def test_work_order_prefix_is_barcode():
    assert classify("WO-12345").kind is ScanKind.BARCODE
    assert classify("WO-").kind is ScanKind.BARCODE


def test_24_hex_is_operator_case_insensitive():
    token = classify("64B7F0C2E4A1B2C3D4E5F601")
    assert token.kind is ScanKind.OPERATOR_ID
    assert token.value == "64b7f0c2e4a1b2c3d4e5f601"


def test_everything_else_is_invalid():
    for raw in ["", None, 42, "wo-123", "GR0001", "64b7f0c2e4a1b2c3d4e5f60", "64b7f0c2e4a1b2c3d4e5f6011",
                "zzb7f0c2e4a1b2c3d4e5f601"]:
        assert classify(raw).kind is ScanKind.INVALID, raw


def test_badge_url_is_reduced_to_last_segment():
    assert normalize_token(" https://hr.example.com/employees/64b7f0c2e4a1b2c3d4e5f601/ ") == \
        "64b7f0c2e4a1b2c3d4e5f601"
    assert classify("https://hr.example.com/e/64b7f0c2e4a1b2c3d4e5f601").is_operator


def test_parse_barcode():
    parsed = parse_barcode("WO-1a2b3c4d-12-3")
    assert parsed.work_order_short_id == "1a2b3c4d"
    assert parsed.unit_number == 12
    assert parsed.operation_number == 3
    assert parse_barcode("WO-1a2b3c4d-7").operation_number is None
    assert parse_barcode("WO-12345") is None
    assert parse_barcode("WO-abc-x") is None


def test_build_barcode_id_uses_short_id():
    assert build_barcode_id("64b7f0c2e4a1b2c3d4e5f601", 5) == "WO-d4e5f601-5"
    assert build_barcode_id("64b7f0c2e4a1b2c3d4e5f601", 5, 2) == "WO-d4e5f601-5-2"
