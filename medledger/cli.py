#!/usr/bin/env python3
"""
MedLedger Command Line Interface

Usage:
    medledger export-log --db <file> [--output <file>]
    medledger verify-log --file <export.json> | --db <file>
    medledger recover --digest <hex> --signature <hex>
    medledger keygen [--output <file>]
"""

import argparse
import json
import sys
from typing import List, Optional


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def _open_audit(db_path: str):
    from medledger.audit import AuditLog
    from medledger.db import RegistryDatabase
    return AuditLog(RegistryDatabase(db_path))


def cmd_export_log(args) -> int:
    """Export the raw audit log, hashes included."""
    rows = _open_audit(args.db).export_rows()
    if args.output:
        save_json(rows, args.output)
        print(f"{len(rows)} audit entries saved to: {args.output}")
    else:
        print(json.dumps(rows, indent=2))
    return 0


def cmd_verify_log(args) -> int:
    """Verify the audit hash chain of an export or a live database."""
    from medledger.audit import verify_rows

    if args.file:
        rows = load_json(args.file)
    else:
        rows = _open_audit(args.db).export_rows()

    try:
        result = verify_rows(rows)
    except (KeyError, TypeError, ValueError) as e:
        print(f"FAIL: malformed export ({e})", file=sys.stderr)
        return 1

    if result["valid"]:
        print(f"PASS: audit log chain valid ({result['entries']} entries)")
        return 0
    print(f"FAIL: {result['reason']} at seq {result['broken_at']}", file=sys.stderr)
    return 1


def cmd_recover(args) -> int:
    """Recover the signer identity of a digest."""
    from medledger.errors import ValidationError
    from medledger.security import NULL_IDENTITY, validate_hex
    from medledger.signatures import recover_signer

    try:
        digest = validate_hex(args.digest, "digest", expected_length=32)
        signature = validate_hex(args.signature, "signature")
    except ValidationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    signer = recover_signer(digest, signature)
    print(signer)
    return 0 if signer != NULL_IDENTITY else 1


def cmd_keygen(args) -> int:
    """Generate a secp256k1 identity for local testing."""
    from medledger.signatures import generate_private_key, identity_from_private_key

    key = generate_private_key()
    data = {
        "identity": identity_from_private_key(key),
        "private_key_hex": key.to_hex(),
    }
    if args.output:
        save_json(data, args.output)
        print(f"Identity {data['identity']} saved to: {args.output}")
    else:
        print(json.dumps(data, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="medledger",
        description="MedLedger audit and signature tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  medledger export-log --db data/medledger.db -o audit.json
  medledger verify-log -f audit.json
  medledger recover --digest 0x... --signature 0x...
  medledger keygen -o patient.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    export_parser = subparsers.add_parser("export-log", help="Export the audit log")
    export_parser.add_argument("-d", "--db", required=True, help="Registry SQLite database")
    export_parser.add_argument("-o", "--output", help="Output JSON file")

    verify_parser = subparsers.add_parser("verify-log", help="Verify the audit hash chain")
    source = verify_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-f", "--file", help="Exported audit log JSON file")
    source.add_argument("-d", "--db", help="Registry SQLite database")

    recover_parser = subparsers.add_parser("recover", help="Recover a signer identity")
    recover_parser.add_argument("--digest", required=True, help="32-byte digest, hex")
    recover_parser.add_argument("--signature", required=True, help="65-byte r||s||v signature, hex")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a secp256k1 identity")
    keygen_parser.add_argument("-o", "--output", help="Output JSON file")

    args = parser.parse_args(argv)

    if args.command == "export-log":
        return cmd_export_log(args)
    elif args.command == "verify-log":
        return cmd_verify_log(args)
    elif args.command == "recover":
        return cmd_recover(args)
    elif args.command == "keygen":
        return cmd_keygen(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
