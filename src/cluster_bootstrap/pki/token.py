"""
cluster_bootstrap.pki.token

Bootstrap Token Deriver.

Responsibilities:
- Derive the CA API token deterministically from the directory password.
- Write it atomically, readable only by the CA service account.
- Turn the stored token into the HMAC key the CA client signs requests with.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from cluster_bootstrap.errors import TokenDerivationError
from cluster_bootstrap.observability.logging import get_logger
from cluster_bootstrap.pki import fs

log = get_logger(__name__)

TOKEN_MODE = 0o400


@dataclass(frozen=True, slots=True)
class BootstrapToken:
    value: str = field(repr=False)
    path: Path
    mode: int
    owner: str


def derive_token(password: str, *, length: int = 32) -> str:
    if length % 2 or not 0 < length <= 32:
        # The CA decodes the token as hex bytes; an odd digit count cannot be decoded.
        raise TokenDerivationError(f"token length must be even and at most 32, got {length}")
    # Same digest as `echo "$password" | md5sum | head -c32`, trailing newline included.
    digest = hashlib.md5(f"{password}\n".encode(), usedforsecurity=False).hexdigest()
    return digest[:length]


def read_password(path: Path | None) -> str:
    if path is None:
        raise TokenDerivationError("no directory password source configured")
    try:
        password = Path(path).read_text().strip()
    except OSError as e:
        raise TokenDerivationError(f"directory password unavailable: {e}") from e
    if not password:
        raise TokenDerivationError(f"directory password source {path} is empty")
    return password


class TokenDeriver:
    def __init__(
        self,
        *,
        path: Path,
        owner: str,
        length: int = 32,
        enforce_ownership: bool = True,
    ) -> None:
        self._path = Path(path)
        self._owner = owner
        self._length = length
        self._enforce_ownership = enforce_ownership

    def derive(self, password: str) -> BootstrapToken:
        if not password:
            raise TokenDerivationError("refusing to derive a token from an empty password")
        value = derive_token(password, length=self._length)
        try:
            fs.write_private_file(
                self._path,
                value.encode(),
                owner=self._owner if self._enforce_ownership else None,
                mode=TOKEN_MODE,
            )
        except (OSError, LookupError) as e:
            raise TokenDerivationError(f"cannot write token {self._path}: {e}") from e
        log.info("bootstrap_token_written", path=str(self._path), owner=self._owner)
        return BootstrapToken(value=value, path=self._path, mode=TOKEN_MODE, owner=self._owner)

    def derive_from_file(self, password_file: Path | None) -> BootstrapToken:
        return self.derive(read_password(password_file))


def load_token(path: Path) -> str:
    try:
        value = Path(path).read_text().strip()
    except OSError as e:
        raise TokenDerivationError(f"bootstrap token unavailable: {e}") from e
    if not value:
        raise TokenDerivationError(f"bootstrap token {path} is empty")
    return value


def auth_key_from_token(value: str) -> bytes:
    # cfssl's standard auth provider expects the key hex-encoded.
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise TokenDerivationError("bootstrap token is not hex encoded") from e


# --- Module Notes -----------------------------------------------------------
# The token is as sensitive as the password it came from; it is never logged or
# sent anywhere except as the HMAC key for CA requests.
