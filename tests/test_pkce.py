"""Unit tests for PKCE and state helpers."""

import base64
import hashlib
import os
import re
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from doubleme_connect.auth.pkce import (
    compute_code_challenge,
    generate_code_verifier,
    generate_state,
)

URL_SAFE = re.compile(r"^[A-Za-z0-9_-]+$")


class TestRandomTokens:
    """Tests for generate_state and generate_code_verifier."""

    def test_state_is_url_safe(self):
        for size in (16, 17, 24, 32, 64):
            state = generate_state(size)
            assert URL_SAFE.match(state), state

    def test_verifier_is_url_safe(self):
        for size in (32, 33, 48, 96):
            verifier = generate_code_verifier(size)
            assert URL_SAFE.match(verifier), verifier

    def test_default_sizes(self):
        # 16 bytes -> 22 chars, 32 bytes -> 43 chars without padding
        assert len(generate_state()) == 22
        assert len(generate_code_verifier()) == 43

    def test_small_sizes_are_raised_to_minimum(self):
        assert len(generate_state(4)) == 22
        assert len(generate_code_verifier(8)) == 43

    def test_values_are_unique(self):
        states = {generate_state() for _ in range(100)}
        assert len(states) == 100


class TestCodeChallenge:
    """Tests for compute_code_challenge."""

    def test_matches_rfc7636_example(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert compute_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_is_deterministic(self):
        verifier = generate_code_verifier()
        assert compute_code_challenge(verifier) == compute_code_challenge(verifier)

    def test_differs_for_distinct_verifiers(self):
        assert compute_code_challenge("verifier-one") != compute_code_challenge("verifier-two")

    def test_is_unpadded_sha256(self):
        verifier = "abc"
        expected = base64.urlsafe_b64encode(hashlib.sha256(b"abc").digest()).decode().rstrip("=")
        challenge = compute_code_challenge(verifier)
        assert challenge == expected
        assert "=" not in challenge
