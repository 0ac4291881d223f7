#!/usr/bin/env python3
"""
ProofSeal Command Line Interface

Usage:
    proofseal hash --file <file>
    proofseal register --file <file> --owner <identity> [--mode <mode>] [--viewer <identity> ...] [--code <code>]
    proofseal retrieve --proof-code <code> (--identity <identity> | --code <code>) --output <file>
    proofseal verify --proof-code <code> --file <file>
    proofseal show --proof-code <code>
    proofseal list --owner <identity>
    proofseal confirm-anchor --proof-code <code> --tx-id <tx>

State lives in the configured backends; set PROOFSEAL_STORE_BACKEND=sqlite
and PROOFSEAL_BLOB_BACKEND=filesystem to keep it between runs.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from . import config
from .errors import SealError
from .evaluator import Credential
from .hashing import hash_of
from .lifecycle import ProofLifecycle, build_lifecycle
from .logging_config import configure_logging


def read_bytes(path: str) -> bytes:
    """Read a document from file."""
    return Path(path).read_bytes()


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_hash(args, lifecycle: Optional[ProofLifecycle] = None):
    """Print the SHA-256 content digest of a file."""
    print(hash_of(read_bytes(args.file)))
    return 0


def cmd_register(args, lifecycle: ProofLifecycle):
    """Register a document."""
    data = read_bytes(args.file)
    result = lifecycle.register(
        data,
        args.owner,
        access_mode=args.mode,
        allowed_viewers=args.viewer or None,
        secret_access_code=args.code,
        document_name=Path(args.file).name,
    )
    print_json(result.to_dict())

    if result.code_generated:
        print("\n! Save the secret access code now; it cannot be shown again.", file=sys.stderr)
    return 0


def cmd_retrieve(args, lifecycle: ProofLifecycle):
    """Decrypt a registered document to a file."""
    credential = Credential.of(args.identity, args.code)
    plaintext = lifecycle.retrieve(args.proof_code, credential)

    with open(args.output, "wb") as f:
        f.write(plaintext)
    print(f"✓ Wrote {len(plaintext)} bytes to: {args.output}", file=sys.stderr)
    return 0


def cmd_verify(args, lifecycle: ProofLifecycle):
    """Check a local copy against a registered proof."""
    record = lifecycle.verify_document(args.proof_code, read_bytes(args.file))
    print(f"✓ MATCH {record.proof_code} ({record.plaintext_hash})")
    return 0


def cmd_show(args, lifecycle: ProofLifecycle):
    """Show a proof record."""
    record = lifecycle.get_proof(args.proof_code)
    d = record.to_dict()
    d["access_mode"] = lifecycle.access_mode_of(record).value
    print_json(d)
    return 0


def cmd_list(args, lifecycle: ProofLifecycle):
    """List proofs registered by an owner."""
    print_json([r.to_dict() for r in lifecycle.proofs_for_owner(args.owner)])
    return 0


def cmd_confirm_anchor(args, lifecycle: ProofLifecycle):
    """Replace a proof's anchor transaction id."""
    record = lifecycle.confirm_anchor(args.proof_code, args.tx_id)
    print_json(record.to_dict())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proofseal",
        description="Tamper-evident, access-controlled document proofs"
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    hash_parser = subparsers.add_parser("hash", help="Compute document digest")
    hash_parser.add_argument("--file", "-f", required=True, help="Document file")

    reg_parser = subparsers.add_parser("register", help="Register a document")
    reg_parser.add_argument("--file", "-f", required=True, help="Document file")
    reg_parser.add_argument("--owner", required=True, help="Owner identity")
    reg_parser.add_argument("--mode", default="owner_only",
                            choices=["owner_only", "specific_wallets", "secret_code"],
                            help="Access mode")
    reg_parser.add_argument("--viewer", action="append", help="Allowed viewer (repeatable)")
    reg_parser.add_argument("--code", help="Secret access code (generated if omitted)")

    ret_parser = subparsers.add_parser("retrieve", help="Decrypt a registered document")
    ret_parser.add_argument("--proof-code", required=True, help="Proof code")
    ret_parser.add_argument("--identity", help="Requester identity")
    ret_parser.add_argument("--code", help="Secret access code")
    ret_parser.add_argument("--output", "-o", required=True, help="Output file")

    ver_parser = subparsers.add_parser("verify", help="Check a document against a proof")
    ver_parser.add_argument("--proof-code", required=True, help="Proof code")
    ver_parser.add_argument("--file", "-f", required=True, help="Document file")

    show_parser = subparsers.add_parser("show", help="Show a proof record")
    show_parser.add_argument("--proof-code", required=True, help="Proof code")

    list_parser = subparsers.add_parser("list", help="List proofs by owner")
    list_parser.add_argument("--owner", required=True, help="Owner identity")

    anchor_parser = subparsers.add_parser("confirm-anchor", help="Replace anchor transaction id")
    anchor_parser.add_argument("--proof-code", required=True, help="Proof code")
    anchor_parser.add_argument("--tx-id", required=True, help="Confirmed transaction id")

    return parser


COMMANDS = {
    "hash": cmd_hash,
    "register": cmd_register,
    "retrieve": cmd_retrieve,
    "verify": cmd_verify,
    "show": cmd_show,
    "list": cmd_list,
    "confirm-anchor": cmd_confirm_anchor,
}


def main(argv=None, lifecycle: Optional[ProofLifecycle] = None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.log_level, json_format=config.LOG_JSON, log_file=config.LOG_FILE)

    try:
        if args.command == "hash":
            return cmd_hash(args)
        return COMMANDS[args.command](args, lifecycle or build_lifecycle())
    except SealError as e:
        print(f"✗ {e.code}: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
