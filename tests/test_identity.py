from __future__ import annotations

from core.identity import digits, extract_phone, fold, is_group_jid, normalize_jid, preview


def test_normalize_strips_device_and_homogenizes_domain() -> None:
    assert normalize_jid("Alice:5@s.whatsapp.net") == normalize_jid("alice@whatsapp.net")
    assert normalize_jid("Alice:5@s.whatsapp.net") == "alice@s.whatsapp.net"


def test_normalize_keeps_other_domains() -> None:
    assert normalize_jid("12345:7@lid") == "12345@lid"
    assert normalize_jid("1203630@G.US") == "1203630@g.us"


def test_normalize_empty_and_bare_inputs() -> None:
    assert normalize_jid("") == ""
    assert normalize_jid(None) == ""
    assert normalize_jid("5551234:3") == "5551234"


def test_extract_phone_and_digits() -> None:
    assert extract_phone("5551234567:12@s.whatsapp.net") == "5551234567"
    assert extract_phone("") == ""
    assert digits("+1 (555) 123-4567") == "15551234567"


def test_fold_removes_accents_and_case() -> None:
    assert fold("  Équipe Café ") == "equipe cafe"
    assert fold(None) == ""


def test_preview_ellipsizes_at_limit() -> None:
    assert preview("short") == "short"
    long_text = "x" * 100
    clipped = preview(long_text)
    assert len(clipped) == 80
    assert clipped.endswith("…")
    assert preview("x" * 80) == "x" * 80
    assert preview(None) == ""


def test_is_group_jid() -> None:
    assert is_group_jid("120363@g.us")
    assert not is_group_jid("5551234@s.whatsapp.net")
