"""Command line entry points for deskops."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Mapping, Sequence

from .config import load_config
from .exceptions import ConfigurationError

PROJECT_NAME = "deskops"


def main(argv: Sequence[str] | None = None, *, environ: Mapping[str, str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper()), format="%(levelname)s %(name)s %(message)s")
    args.environ = environ
    return args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROJECT_NAME, description="Helpdesk slash commands for Mattermost")
    parser.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--certificate", default=None, help="TLS certificate path")
    serve.add_argument("--private-key", default=None, help="TLS private key path")
    serve.add_argument("--profile", default="production")
    serve.set_defaults(func=_cmd_serve)

    check = sub.add_parser("check-config", help="Validate configuration from the environment")
    check.set_defaults(func=_cmd_check_config)

    return parser


def _cmd_check_config(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.environ).validate()
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1
    print(f"helpdesk host: {config.helpdesk.host_label}.{config.helpdesk.api_domain}")
    print(f"oauth redirect: {config.redirect_uri}")
    print(f"shared credential: {'configured' if config.helpdesk.has_shared_credential else 'not configured'}")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from .application import DeskOpsApp
    from .server import ServerConfig, run

    try:
        app = DeskOpsApp(load_config(args.environ))
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1
    run(
        app,
        ServerConfig(
            host=args.host,
            port=args.port,
            certificate_path=args.certificate,
            private_key_path=args.private_key,
            profile=args.profile,
        ),
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
