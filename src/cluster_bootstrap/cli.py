"""
cluster_bootstrap.cli

`cluster-bootstrap` command line.

Subcommands:
  provision                    run the whole pipeline in-process and record it
  derive-token                 write the CA bootstrap token
  issue [NAME ...]             issue certificates (all identities by default)
  synthesize-bundles           write connection bundles for admin and system identities
  wait-for-certs SERVICE       block until SERVICE's certificates are present
  reconcile [--force|--reset]  create the monitoring role bindings once
  units [--format F]           print (or write) the unit dependency graph
  make-kubeconfig [NAME]       service-account token bundle for NAME
  shell-init                   login-shell snippet exporting KUBECONFIG
  status-token SUBJECT         mint a status API bearer token
  serve                        run the status API

Each subcommand is also the ExecStart of one unit in the generated graph, so the exit
code is what the supervisor sees: failures map onto `ExitCode`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from enum import IntEnum
from pathlib import Path
from typing import Any

from cluster_bootstrap import __version__
from cluster_bootstrap.bundles.resolver import current_account, shell_init
from cluster_bootstrap.bundles.synthesizer import (
    bundle_path,
    load_bundle,
    select_endpoint,
    synthesize_all,
)
from cluster_bootstrap.auth.jwt import JwtConfig, issue_token
from cluster_bootstrap.auth.models import Role
from cluster_bootstrap.db.init_db import init_db
from cluster_bootstrap.db.models import RunStatus
from cluster_bootstrap.db.repositories.markers import MarkerRepo
from cluster_bootstrap.db.session import create_engine, create_sessionmaker
from cluster_bootstrap.errors import (
    ApiUnavailableError,
    BootstrapError,
    BundleResolutionError,
    IdentityError,
    IssuanceError,
    ReadinessTimeoutError,
    ReconciliationError,
    TokenDerivationError,
)
from cluster_bootstrap.gate.gate import CertificateCheck, ReadinessGate
from cluster_bootstrap.gate.requirements import DEFAULT_REQUIREMENTS, requirement_for
from cluster_bootstrap.gate.units import build_unit_graph, unit_files
from cluster_bootstrap.identity.models import CertificateMaterial, Identity
from cluster_bootstrap.identity.registry import builtin_identities, list_identities
from cluster_bootstrap.observability.logging import configure_logging, get_logger
from cluster_bootstrap.pki import fs
from cluster_bootstrap.pki.issuance import IssuanceAdapter, MaterialLayout
from cluster_bootstrap.pki.token import TokenDeriver, auth_key_from_token, load_token
from cluster_bootstrap.reconciler.kube_client import ClusterApiClient, client_from_bundle
from cluster_bootstrap.reconciler.reconciler import JOB_NAME
from cluster_bootstrap.reconciler.service_accounts import make_token_kubeconfig
from cluster_bootstrap.services.provisioning_service import ProvisioningService
from cluster_bootstrap.services.wiring import (
    admin_members,
    cfssl_factory,
    gate_backoff,
    reconciler_factory,
)
from cluster_bootstrap.settings import Settings, get_settings

log = get_logger("cluster_bootstrap.cli")


class ExitCode(IntEnum):
    OK = 0
    GENERAL_ERROR = 1
    USAGE = 2
    IDENTITY = 3
    TOKEN = 4
    ISSUANCE = 5
    BUNDLE = 6
    READINESS = 7
    RECONCILE = 8
    API_UNAVAILABLE = 9
    DEGRADED = 10
    ABORTED = 11


# Most specific first.
_ERROR_CODES: tuple[tuple[type[BaseException], ExitCode], ...] = (
    (IdentityError, ExitCode.IDENTITY),
    (TokenDerivationError, ExitCode.TOKEN),
    (IssuanceError, ExitCode.ISSUANCE),
    (BundleResolutionError, ExitCode.BUNDLE),
    (ReadinessTimeoutError, ExitCode.READINESS),
    (ApiUnavailableError, ExitCode.API_UNAVAILABLE),
    (ReconciliationError, ExitCode.RECONCILE),
    (TimeoutError, ExitCode.ABORTED),
)


def exit_code_for(error: BaseException) -> ExitCode:
    for kind, code in _ERROR_CODES:
        if isinstance(error, kind):
            return code
    return ExitCode.GENERAL_ERROR


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _identities(settings: Settings) -> dict[str, Identity]:
    return list_identities(admin_members(settings), builtin_identities(settings.addresses))


def _layout(settings: Settings) -> MaterialLayout:
    return MaterialLayout(settings.secrets_dir, enforce_ownership=settings.enforce_ownership)


def _select(identities: dict[str, Identity], names: Sequence[str]) -> list[Identity]:
    if not names:
        return list(identities.values())
    unknown = [n for n in names if n not in identities]
    if unknown:
        raise IdentityError(f"unknown identities: {', '.join(unknown)}")
    return [identities[n] for n in names]


def _material(layout: MaterialLayout, identity: Identity) -> CertificateMaterial:
    material = layout.existing(identity)
    if material is None:
        raise IssuanceError(identity.name, "no certificate material on disk yet")
    return material


# ---- subcommands ------------------------------------------------------------


async def _provision(settings: Settings, args: argparse.Namespace) -> ExitCode:
    engine = create_engine(settings)
    try:
        await init_db(engine)
        async with create_sessionmaker(engine)() as session:
            svc = ProvisioningService(session=session, settings=settings)
            result = await svc.provision(actor=current_account()[0])
    finally:
        await engine.dispose()
    _print_json(result)
    return ExitCode.DEGRADED if result["status"] == str(RunStatus.degraded) else ExitCode.OK


def _derive_token(settings: Settings, args: argparse.Namespace) -> ExitCode:
    token = TokenDeriver(
        path=settings.token_path,
        owner=settings.token_owner,
        length=settings.token_length,
        enforce_ownership=settings.enforce_ownership,
    ).derive_from_file(settings.password_file)
    _print_json({"path": str(token.path), "owner": token.owner, "mode": f"{token.mode:04o}"})
    return ExitCode.OK


async def _issue(settings: Settings, args: argparse.Namespace) -> ExitCode:
    selected = _select(_identities(settings), args.names)
    auth_key = auth_key_from_token(load_token(settings.token_path))
    async with cfssl_factory(settings)(auth_key) as ca:
        adapter = IssuanceAdapter(ca=ca, layout=_layout(settings), profile=settings.ca_profile)
        materials = await adapter.issue_all(selected)
        ca_cert = await adapter.ensure_ca_certificate(settings.ca_cert)
    _print_json(
        {
            "issued": {n: m.to_dict() for n, m in materials.items()},
            "ca_cert": str(ca_cert) if ca_cert else None,
        }
    )
    return ExitCode.OK


def _synthesize_bundles(settings: Settings, args: argparse.Namespace) -> ExitCode:
    identities = _identities(settings)
    layout = _layout(settings)
    materials = {n: _material(layout, i) for n, i in identities.items() if i.needs_bundle}
    ca_data = settings.ca_cert.read_bytes() if fs.non_empty(settings.ca_cert) else None
    written = synthesize_all(
        identities,
        materials,
        endpoint=select_endpoint(settings.addresses, settings.apiserver_port),
        directory=settings.kubeconfig_dir,
        enforce_ownership=settings.enforce_ownership,
        certificate_authority=ca_data,
    )
    _print_json({n: str(p) for n, p in written.items()})
    return ExitCode.OK


async def _wait_for_certs(settings: Settings, args: argparse.Namespace) -> ExitCode:
    try:
        requirement = requirement_for(DEFAULT_REQUIREMENTS, args.service)
    except KeyError:
        print(f"no readiness requirement for service {args.service!r}", file=sys.stderr)
        return ExitCode.USAGE
    gate = ReadinessGate(
        requirement,
        check=CertificateCheck(_layout(settings), _identities(settings)),
        deadline=args.deadline if args.deadline is not None else settings.gate_deadline_seconds,
        backoff=gate_backoff(settings),
    )
    status = await gate.wait()
    _print_json(status.to_dict())
    return ExitCode.OK


async def _reconcile(settings: Settings, args: argparse.Namespace) -> ExitCode:
    identities = _identities(settings)
    if settings.reconciler_identity not in identities:
        raise IdentityError(f"reconciler identity {settings.reconciler_identity!r} is not registered")
    material = _material(_layout(settings), identities[settings.reconciler_identity])
    endpoint = select_endpoint(settings.addresses, settings.apiserver_port)
    ca_path = settings.ca_cert if fs.non_empty(settings.ca_cert) else None

    engine = create_engine(settings)
    try:
        await init_db(engine)
        async with create_sessionmaker(engine)() as session:
            markers = _SessionMarkers(session)
            if args.reset and await markers.reset(JOB_NAME):
                log.info("reconcile_marker_reset", job=JOB_NAME)
            async with reconciler_factory(settings, markers=markers)(
                material, ca_path, endpoint
            ) as reconciler:
                report = await reconciler.run(force=args.force)
    finally:
        await engine.dispose()
    _print_json(report.to_dict())
    return ExitCode.OK


class _SessionMarkers:
    def __init__(self, session: Any) -> None:
        self._session = session
        self._repo = MarkerRepo(session)

    async def is_done(self, job: str) -> bool:
        return await self._repo.is_done(job)

    async def mark_done(self, job: str, details: dict[str, Any]) -> None:
        await self._repo.mark_done(job, details)
        await self._session.commit()

    async def reset(self, job: str) -> bool:
        cleared = await self._repo.reset(job)
        await self._session.commit()
        return cleared


def _units(settings: Settings, args: argparse.Namespace) -> ExitCode:
    graph = build_unit_graph(
        _identities(settings),
        DEFAULT_REQUIREMENTS,
        reconciler_identity=settings.reconciler_identity,
    )
    if args.format == "json":
        _print_json(graph.to_dict())
        return ExitCode.OK

    files = unit_files(graph)
    if args.output_dir is None:
        for name, content in files.items():
            print(f"# {name}\n{content}")
        return ExitCode.OK
    for name, content in files.items():
        fs.write_public_file(args.output_dir / name, content.encode())
    _print_json(sorted(files))
    return ExitCode.OK


async def _make_kubeconfig(settings: Settings, args: argparse.Namespace) -> ExitCode:
    name = args.name or current_account()[0]
    path = bundle_path(settings.kubeconfig_dir, settings.admin_bundle)
    if not path.is_file():
        raise BundleResolutionError(f"administrative bundle {path} does not exist")
    base = load_bundle(path)
    async with client_from_bundle(base) as http:
        doc = await make_token_kubeconfig(
            ClusterApiClient(http=http), name=name, base=base, namespace=args.namespace
        )
    _print_json(doc)
    return ExitCode.OK


def _shell_init(settings: Settings, args: argparse.Namespace) -> ExitCode:
    sys.stdout.write(shell_init(settings.kubeconfig_dir, admin_bundle=settings.admin_bundle))
    return ExitCode.OK


def _status_token(settings: Settings, args: argparse.Namespace) -> ExitCode:
    print(issue_token(cfg=JwtConfig.from_settings(settings), subject=args.subject, roles=args.role))
    return ExitCode.OK


def _serve(settings: Settings, args: argparse.Namespace) -> ExitCode:
    from cluster_bootstrap.api.__main__ import serve

    serve(settings)
    return ExitCode.OK


# ---- parser -----------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cluster-bootstrap",
        description="Bootstrap the control plane of a cluster master node.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="override CLUSTER_BOOTSTRAP_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("provision", help="run the whole provisioning pipeline")
    sub.add_parser("derive-token", help="derive and write the CA bootstrap token")

    p = sub.add_parser("issue", help="issue certificates")
    p.add_argument("names", nargs="*", metavar="NAME")

    sub.add_parser("synthesize-bundles", help="write connection bundles")

    p = sub.add_parser("wait-for-certs", help="block until a service's certificates exist")
    p.add_argument("service", metavar="SERVICE")
    p.add_argument("--deadline", type=float, default=None, help="seconds before giving up")

    p = sub.add_parser("reconcile", help="create the monitoring role bindings")
    p.add_argument("--force", action="store_true", help="run even if already completed")
    p.add_argument(
        "--reset", action="store_true", help="clear the completion marker, then run"
    )

    p = sub.add_parser("units", help="print the unit dependency graph")
    p.add_argument("--format", choices=("json", "systemd"), default="json")
    p.add_argument("--output-dir", type=Path, default=None, help="write systemd unit files here")

    p = sub.add_parser("make-kubeconfig", help="service-account token bundle")
    p.add_argument("name", nargs="?", default=None, metavar="NAME")
    p.add_argument("--namespace", default="default")

    sub.add_parser("shell-init", help="print the KUBECONFIG login snippet")
    p = sub.add_parser("status-token", help="mint a bearer token for the status API")
    p.add_argument("subject", metavar="SUBJECT")
    p.add_argument(
        "--role",
        action="append",
        choices=[str(r) for r in Role],
        default=[],
        help="repeatable; operator or admin",
    )

    sub.add_parser("serve", help="run the status API")
    return parser


_COMMANDS = {
    "provision": _provision,
    "derive-token": _derive_token,
    "issue": _issue,
    "synthesize-bundles": _synthesize_bundles,
    "wait-for-certs": _wait_for_certs,
    "reconcile": _reconcile,
    "units": _units,
    "make-kubeconfig": _make_kubeconfig,
    "shell-init": _shell_init,
    "status-token": _status_token,
    "serve": _serve,
}


def run(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> ExitCode:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()
    configure_logging(
        service_name=settings.service_name,
        level=args.log_level or settings.log_level,
        stream=sys.stderr,
    )

    handler = _COMMANDS[args.command]
    try:
        result = handler(settings, args)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return result
    except (BootstrapError, TimeoutError) as e:
        code = exit_code_for(e)
        log.error("command_failed", command=args.command, error_type=type(e).__name__, error=str(e))
        print(f"cluster-bootstrap {args.command}: {e}", file=sys.stderr)
        return code


def main(argv: Sequence[str] | None = None) -> None:
    sys.exit(int(run(argv)))
