"""
tests.test_token

Bootstrap Token Deriver: determinism, file protection, and fatal missing sources.
"""

from __future__ import annotations

import stat

import pytest
from pydantic import ValidationError

from cluster_bootstrap.errors import TokenDerivationError
from cluster_bootstrap.pki.token import (
    TOKEN_MODE,
    TokenDeriver,
    auth_key_from_token,
    derive_token,
    load_token,
)
from cluster_bootstrap.settings import Settings


def test_derivation_is_deterministic() -> None:
    assert derive_token("pw1") == derive_token("pw1")
    assert derive_token("pw1") != derive_token("pw2")


def test_matches_md5sum_of_echoed_password() -> None:
    # echo secret | md5sum
    assert derive_token("secret") == "dd02c7c2232759874e1c205587017bed"
    assert len(derive_token("secret", length=16)) == 16


def test_token_file_is_owner_read_only(tmp_path) -> None:
    path = tmp_path / "cfssl" / "apitoken.secret"
    deriver = TokenDeriver(path=path, owner="cfssl", enforce_ownership=False)

    token = deriver.derive("pw1")

    assert token.mode == TOKEN_MODE
    assert stat.S_IMODE(path.stat().st_mode) == 0o400
    assert load_token(path) == derive_token("pw1")
    assert "pw1" not in repr(token) and token.value not in repr(token)


def test_rederive_overwrites_read_only_token(tmp_path) -> None:
    path = tmp_path / "apitoken.secret"
    deriver = TokenDeriver(path=path, owner="cfssl", enforce_ownership=False)
    deriver.derive("pw1")
    deriver.derive("pw2")
    assert load_token(path) == derive_token("pw2")


def test_missing_password_source_writes_nothing(tmp_path) -> None:
    path = tmp_path / "apitoken.secret"
    deriver = TokenDeriver(path=path, owner="cfssl", enforce_ownership=False)

    with pytest.raises(TokenDerivationError):
        deriver.derive_from_file(tmp_path / "does-not-exist")
    with pytest.raises(TokenDerivationError):
        deriver.derive_from_file(None)
    with pytest.raises(TokenDerivationError):
        deriver.derive("")

    assert not path.exists()


def test_empty_password_file_is_fatal(tmp_path) -> None:
    source = tmp_path / "password"
    source.write_text("\n")
    deriver = TokenDeriver(path=tmp_path / "t", owner="cfssl", enforce_ownership=False)
    with pytest.raises(TokenDerivationError):
        deriver.derive_from_file(source)


def test_auth_key_is_hex_decoded_token() -> None:
    assert auth_key_from_token("00ff10") == b"\x00\xff\x10"


def test_shortened_token_still_decodes_as_the_ca_key(tmp_path) -> None:
    path = tmp_path / "apitoken.secret"
    TokenDeriver(path=path, owner="cfssl", length=16, enforce_ownership=False).derive("pw")
    assert len(auth_key_from_token(load_token(path))) == 8


def test_odd_token_length_is_rejected_before_writing(tmp_path) -> None:
    path = tmp_path / "apitoken.secret"
    deriver = TokenDeriver(path=path, owner="cfssl", length=31, enforce_ownership=False)
    with pytest.raises(TokenDerivationError, match="even"):
        deriver.derive("pw")
    assert not path.exists()


def test_settings_reject_odd_token_length() -> None:
    with pytest.raises(ValidationError, match="token_length must be even"):
        Settings(token_length=31)
    assert Settings(token_length=16).token_length == 16
