import hashlib

import pytest

from codes import clamp, generate_code, generate_token, hash_password, is_valid_code, normalize_code
from constants import ROOM_CODE_ALPHABET


@pytest.mark.parametrize("raw,expected", [
    ("abcd1234", "ABCD1234"),
    ("  ab-cd_12 34 ", "ABCD1234"),
    ("äbc!@#xyz9", "BCXYZ9"),
    ("", ""),
    (None, ""),
])
def test_normalize_code(raw, expected):
    assert normalize_code(raw) == expected


@pytest.mark.parametrize("raw", ["abc-def-123", "ZZZZ zzzz 0000", "!!", "MiXeD_case_42"])
def test_normalize_code_is_idempotent(raw):
    once = normalize_code(raw)
    assert normalize_code(once) == once
    assert all(ch in ROOM_CODE_ALPHABET for ch in once)


def test_is_valid_code_bounds():
    assert not is_valid_code("A" * 7)
    assert is_valid_code("A" * 8)
    assert is_valid_code("A" * 12)
    assert not is_valid_code("A" * 13)


def test_hash_password_is_trimmed_sha256():
    expected = hashlib.sha256(b"abcd").hexdigest()
    assert hash_password("abcd") == expected
    assert hash_password("  abcd\n") == expected
    assert hash_password("abcd") == hash_password("abcd")


@pytest.mark.parametrize("pw", ["", None, "abc", "   ab  ", "x" * 65])
def test_hash_password_rejects_bad_lengths(pw):
    assert hash_password(pw) == ""


def test_hash_password_accepts_boundaries():
    assert len(hash_password("x" * 4)) == 64
    assert len(hash_password("x" * 64)) == 64


@pytest.mark.parametrize("length,expected", [(None, 10), (8, 8), (12, 12), (3, 8), (40, 12), ("junk", 10)])
def test_generate_code_length(length, expected):
    code = generate_code(length)
    assert len(code) == expected
    assert normalize_code(code) == code


def test_generate_token_is_random_hex():
    a, b = generate_token(), generate_token()
    assert a != b
    assert len(a) == 32
    int(a, 16)


def test_clamp():
    assert clamp(5, 30, 60) == 30
    assert clamp(45, 30, 60) == 45
    assert clamp(90, 30, 60) == 60
