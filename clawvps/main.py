from __future__ import annotations

import argparse

from clawvps import __version__, installer, updater


def _handle_install(args: argparse.Namespace) -> None:
    installer.run_install(hardened=args.hardened)


def _handle_update(args: argparse.Namespace) -> None:
    updater.main(["--quiet"] if args.quiet else [])


def _handle_status(_args: argparse.Namespace) -> None:
    installer.run_status()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawvps",
        description="Provision an Ubuntu VPS for OpenClaw behind Tailscale.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    install_parser = subparsers.add_parser(
        "install",
        help="Install and configure OpenClaw, its runtimes and host security",
    )
    install_parser.add_argument(
        "--hardened",
        action="store_true",
        help="Also harden sshd and offer Tailscale-only access to SSH and the gateway",
    )
    install_parser.set_defaults(handler=_handle_install)

    update_parser = subparsers.add_parser(
        "update",
        help="Update OpenClaw and restart the gateway when the version changes",
    )
    update_parser.add_argument("--quiet", action="store_true", help="Only write the log file (for cron)")
    update_parser.set_defaults(handler=_handle_update)

    status_parser = subparsers.add_parser(
        "status",
        help="Show installed components, Tailscale and gateway state without changing anything",
    )
    status_parser.set_defaults(handler=_handle_status)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        raise RuntimeError(f"Unhandled command: {getattr(args, 'command', '<missing>')}")
    handler(args)


if __name__ == "__main__":
    main()
