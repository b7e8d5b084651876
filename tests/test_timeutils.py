import pytest

from crypto_observability_mcp.hashing import compute_expiry, hash_payload, is_expired, sha256
from crypto_observability_mcp.timeutils import (
    TimeWindow,
    calculate_data_age_ms,
    clamp_window_start,
    unify_time_window,
)


def test_unify_time_window_aligns_to_minute_by_default():
    window = unify_time_window(125_000)
    assert window == TimeWindow(anchor_ts_ms=125_000, window_ms=60_000, window_start_ms=120_000, window_end_ms=180_000)


def test_unify_time_window_aligns_to_requested_window_size():
    window = unify_time_window(610_000, 300_000)
    assert window.window_start_ms == 600_000
    assert window.window_end_ms == 900_000
    assert window.window_ms == 300_000


def test_unify_time_window_anchors_on_now(clock):
    window = unify_time_window()
    assert window.anchor_ts_ms == clock.now_ms
    assert window.window_start_ms <= clock.now_ms < window.window_end_ms


def test_unify_time_window_rejects_non_positive_size():
    with pytest.raises(ValueError):
        unify_time_window(1_000, 0)


def test_data_age_is_clamped_for_future_sources():
    assert calculate_data_age_ms(1_000, 400) == 600
    assert calculate_data_age_ms(1_000, 5_000) == 0


def test_clamp_window_start():
    window = unify_time_window(125_000)
    clamped = clamp_window_start(window, 121_500)
    assert clamped.window_start_ms == 121_500
    assert clamped.window_end_ms == window.window_end_ms
    assert clamp_window_start(window, 100_000) is window


def test_sha256_known_digest():
    assert sha256("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert sha256(b"abc") == sha256("abc")


def test_hash_payload_ignores_key_order():
    assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
    assert hash_payload("abc") == sha256("abc")


def test_expiry_helpers(clock):
    expires_at = compute_expiry(1_000)
    assert expires_at == clock.now_ms + 1_000
    assert not is_expired(expires_at)
    clock.advance(1_000)
    assert is_expired(expires_at)
