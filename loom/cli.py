"""Command line interface for loom.

Examples::

    loom -H web1 -H web2 -u deploy run "uptime"
    loom -H web1 --ask-password sudo "apt-get update"
    loom -H web1 put "dist/*.tar.gz" /srv/releases/
    loom -H web1 get /etc/nginx/nginx.conf ./backup/
    loom hosts add web1 web1.example.com:2222 --user deploy --default

The abort-on-error policy lives here: by default the first failure is logged
and ends the program with status 1; ``--keep-going`` continues with the
remaining hosts and reports failure at the end.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .api import Loom
from .config import PROVIDERS, Config, split_host_port
from .errors import LoomError
from .log_utils import sanitize_log, setup_logging
from .remote.session import ConnectionProvider
from .settings import SettingsStore


logger = logging.getLogger("loom.cli")

DEFAULT_PASSWORD_ENV = "LOOM_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="loom", description="Run commands and copy files on remote hosts over SSH.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("-H", "--host", action="append", default=[], help="host[:port]; repeat for several hosts")
    ap.add_argument("-u", "--user", default=None, help="SSH user (default: current user)")
    ap.add_argument("-i", "--identity", action="append", default=[], help="extra private key file; repeatable")
    ap.add_argument("--profile", default=None, help="host profile id from the settings file")
    ap.add_argument("--provider", choices=PROVIDERS, default=None, help="SSH implementation")
    ap.add_argument("--sudo-prompt", default=None, help="literal sudo prompt to answer")
    pw = ap.add_mutually_exclusive_group()
    pw.add_argument("--ask-password", action="store_true", help="prompt for the SSH/sudo password")
    pw.add_argument(
        "--password-env",
        default=DEFAULT_PASSWORD_ENV,
        help=f"environment variable holding the password (default: {DEFAULT_PASSWORD_ENV})",
    )
    ap.add_argument("-q", "--quiet", action="store_true", help="do not echo commands and live output")
    ap.add_argument("--keep-going", action="store_true", help="continue with other hosts after a failure")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="run a remote command")
    p.add_argument("cmd")
    p = sub.add_parser("sudo", help="run a remote command as root")
    p.add_argument("cmd")
    p = sub.add_parser("put", help="copy local files (glob) to the remote host")
    p.add_argument("local")
    p.add_argument("remote")
    p = sub.add_parser("put-string", help="write DATA ('-' for stdin) to a remote file (mode 0644)")
    p.add_argument("data")
    p.add_argument("remote")
    p = sub.add_parser("get", help="copy a remote file to the local host")
    p.add_argument("remote")
    p.add_argument("local")
    p = sub.add_parser("local", help="run a local command")
    p.add_argument("cmd")

    hosts = sub.add_parser("hosts", help="manage saved host profiles")
    hsub = hosts.add_subparsers(dest="hosts_command", required=True)
    hsub.add_parser("list")
    p = hsub.add_parser("add")
    p.add_argument("id")
    p.add_argument("address", help="host[:port]")
    p.add_argument("--user", dest="profile_user", default="")
    p.add_argument("--key", dest="profile_keys", action="append", default=[])
    p.add_argument("--provider", dest="profile_provider", choices=PROVIDERS, default="paramiko")
    p.add_argument("--default", action="store_true")
    p = hsub.add_parser("remove")
    p.add_argument("id")
    return ap


def _hosts_command(args: argparse.Namespace, store: SettingsStore) -> int:
    if args.hosts_command == "list":
        data = store.load()
        default_id = data.get("default_host_id")
        for h in store.hosts():
            mark = "*" if h.get("id") == default_id else " "
            user = h.get("user") or "-"
            print(f"{mark} {h.get('id')}\t{user}@{h.get('host')}\t{h.get('provider', 'paramiko')}")
        return 0
    if args.hosts_command == "add":
        try:
            split_host_port(args.address)
        except ValueError as e:
            logger.error("invalid address %s: %s", args.address, e)
            return 2
        cfg = Config(
            host=args.address,
            user=args.profile_user,
            key_files=list(args.profile_keys),
            provider=args.profile_provider,
        )
        store.put_host(args.id, cfg, make_default=args.default)
        logger.info("saved host profile %s", args.id)
        return 0
    if not store.remove_host(args.id):
        logger.error("no such host profile: %s", args.id)
        return 1
    return 0


def _base_config(args: argparse.Namespace, store: SettingsStore) -> Config:
    cfg: Optional[Config] = None
    if args.profile:
        cfg = store.get_host(args.profile)
        if cfg is None:
            raise LoomError(f"no such host profile: {args.profile}")
    elif not args.host:
        cfg = store.get_host()
    if cfg is None:
        cfg = Config()

    if args.user:
        cfg.user = args.user
    if args.identity:
        cfg.key_files = list(cfg.key_files) + list(args.identity)
    if args.provider:
        cfg.provider = args.provider
    if args.sudo_prompt:
        cfg.sudo_prompt = args.sudo_prompt
    cfg.display_output = not args.quiet
    cfg.abort_on_error = not args.keep_going

    if args.ask_password:
        cfg.password = getpass.getpass(f"Password for {cfg.effective_user}: ")
    else:
        cfg.password = os.environ.get(args.password_env) or None
    return cfg


def _print_result(cfg: Config, out: str) -> None:
    # With display_output the output was already echoed live.
    if not cfg.display_output and out:
        sys.stdout.write(sanitize_log(out))
        sys.stdout.flush()


def _run_on_host(args: argparse.Namespace, cfg: Config, provider: Optional[ConnectionProvider] = None) -> None:
    box = Loom(cfg, provider=provider)
    if args.command == "run":
        _print_result(cfg, box.run(args.cmd))
    elif args.command == "sudo":
        _print_result(cfg, box.sudo(args.cmd))
    elif args.command == "put":
        box.put(args.local, args.remote)
    elif args.command == "put-string":
        data = sys.stdin.read() if args.data == "-" else args.data
        box.put_string(data, args.remote)
    elif args.command == "get":
        box.get(args.remote, args.local)
    else:
        raise ValueError(f"unknown command: {args.command}")


def main(
    argv: Optional[List[str]] = None,
    store: Optional[SettingsStore] = None,
    provider: Optional[ConnectionProvider] = None,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)
    store = store if store is not None else SettingsStore()

    if args.command == "hosts":
        return _hosts_command(args, store)

    if args.command == "local":
        cfg = Config(display_output=not args.quiet)
        try:
            out = Loom(cfg, provider=provider).local(args.cmd)
        except LoomError as e:
            logger.error("%s", e)
            return 1
        _print_result(cfg, out)
        return 0

    try:
        base = _base_config(args, store)
    except LoomError as e:
        logger.error("%s", e)
        return 1

    hosts = list(args.host) or ([base.host] if base.host else [])
    if not hosts:
        logger.error("no host given (use -H or save a default profile)")
        return 2

    failures = 0
    for host in hosts:
        cfg = base.with_host(host)
        try:
            _run_on_host(args, cfg, provider)
        except (LoomError, ValueError) as e:
            failures += 1
            logger.error("[%s] %s", host, e)
            if cfg.abort_on_error:
                return 1
    if failures:
        logger.error("%d of %d host(s) failed", failures, len(hosts))
        return 1
    return 0
