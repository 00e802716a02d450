"""
cluster_bootstrap.bundles.resolver

Default bundle selection for interactive sessions.

Responsibilities:
- Resolve the bundle for the acting account (superuser gets the administrative bundle).
- Render the login-shell snippet that exports KUBECONFIG the same way.
"""

from __future__ import annotations

import os
import pwd
from pathlib import Path

from cluster_bootstrap.bundles.synthesizer import bundle_path
from cluster_bootstrap.errors import NoBundleForPrincipalError
from cluster_bootstrap.identity.registry import is_valid_name


def bundle_principal(*, account: str, uid: int, admin_bundle: str) -> str:
    return admin_bundle if uid == 0 else account


def resolve_bundle(directory: Path, *, account: str, uid: int, admin_bundle: str) -> Path:
    principal = bundle_principal(account=account, uid=uid, admin_bundle=admin_bundle)
    if not is_valid_name(principal):
        raise NoBundleForPrincipalError(principal)
    path = bundle_path(directory, principal)
    if not path.is_file():
        raise NoBundleForPrincipalError(principal)
    return path


def current_account() -> tuple[str, int]:
    uid = os.geteuid()
    try:
        return pwd.getpwuid(uid).pw_name, uid
    except KeyError:
        return os.environ.get("USER", str(uid)), uid


def shell_init(directory: Path, *, admin_bundle: str) -> str:
    return (
        'if [[ $UID == 0 ]]; then\n'
        f'  export KUBECONFIG={bundle_path(directory, admin_bundle)}\n'
        'else\n'
        f'  export KUBECONFIG={Path(directory)}/$USER.kubeconfig\n'
        'fi\n'
    )
