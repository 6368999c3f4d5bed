from __future__ import annotations

import argparse
import json

from pydantic import ValidationError

from .client import load_seed_file, normalize_seed_server, obtain_and_persist_seed
from .errors import HashRejected, SeedClientError


def cmd_fetch(args: argparse.Namespace) -> int:
    try:
        server = normalize_seed_server(args.server)
    except ValueError as e:
        print(f"invalid seed server: {e}")
        return 2
    try:
        path = obtain_and_persist_seed(args.file, server, args.dest)
    except HashRejected as e:
        print(f"not authorized: {e}")
        return 3
    except SeedClientError as e:
        print(f"seed retrieval failed: {e}")
        return 1
    print(f"wrote {path}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    try:
        signed = load_seed_file(args.input)
    except (OSError, ValidationError) as e:
        print(f"cannot read seed file {args.input}: {e}")
        return 1
    print(json.dumps({
        "issued": signed.seed.issued.isoformat(),
        "username": signed.seed.username,
        "certs": [c.key_name for c in signed.seed.certs],
        "signature_bytes": len(signed.signature),
    }, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser("seedgate-client")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_fetch = sub.add_parser("fetch", help="hash a file and store a signed seed beside it")
    p_fetch.add_argument("--file", required=True, help="file on the medium to hash")
    p_fetch.add_argument("--server", required=True, help="seed server FQDN or URL")
    p_fetch.add_argument("--dest", required=True, help="directory that receives seed.json")
    p_fetch.set_defaults(func=cmd_fetch)

    p_show = sub.add_parser("show", help="summarize a stored seed.json")
    p_show.add_argument("--input", required=True)
    p_show.set_defaults(func=cmd_show)

    args = p.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
