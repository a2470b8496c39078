#!/usr/bin/env python3
"""
agentlink CLI — Offline tooling for agent-link credentials.

Works directly with core modules (no server required), except ``serve``.

Commands:
    keygen   - Generate a signing key file
    address  - Show the address of a key file
    hash     - Canonical hash of a credential document
    sign     - Sign an issued credential document
    verify   - Check a credential signature (exit 0 valid, 1 invalid, 2 unsigned)
    summary  - Short overview of a credential document
    serve    - Run the HTTP API

Any error (unreadable or malformed input, bad arguments) exits with 3.
"""

import argparse
import json
import sys
from typing import Optional

EXIT_CODES = {"valid": 0, "invalid": 1, "unsigned": 2}
EXIT_ERROR = 3


def _output(data: dict, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, 'json', False):
        print(json.dumps(data, indent=2, default=str))
    elif human_fn:
        human_fn(data)
    else:
        print(json.dumps(data, indent=2, default=str))


def _read_document(path: str) -> dict:
    if path == '-':
        return json.load(sys.stdin)
    with open(path) as f:
        return json.load(f)


def _write_document(doc: dict, path: str):
    with open(path, 'w') as f:
        json.dump(doc, f, indent=2)


# ─── Commands ──────────────────────────────────────────────────────

def cmd_keygen(args):
    """Generate a new signing key and save it."""
    from agentlink.signing import LocalSigner

    signer = LocalSigner.generate()
    signer.save(args.output)
    result = {"address": signer.address, "keyfile": args.output}

    def human(d):
        print("🔑 Signing key created")
        print(f"   Address: {d['address']}")
        print(f"   Saved:   {d['keyfile']}")

    _output(result, args, human)
    return result


def cmd_address(args):
    from agentlink.signing import LocalSigner

    result = {"address": LocalSigner.load(args.keyfile).address}
    _output(result, args, lambda d: print(d["address"]))
    return result


def cmd_hash(args):
    """Canonical hash of a credential (signature fields excluded)."""
    from agentlink.canonical import canonicalize, strip_signature, vc_hash

    doc = _read_document(args.file)
    result = {"vcId": doc.get("vcId"), "vcHash": vc_hash(doc)}
    if args.canonical:
        result["canonical"] = canonicalize(strip_signature(doc))

    def human(d):
        print(d["vcHash"])
        if "canonical" in d:
            print(d["canonical"])

    _output(result, args, human)
    return result


def cmd_sign(args):
    """Sign an unsigned credential document with a key file."""
    from agentlink.canonical import vc_hash
    from agentlink.credential import AgentVC, VCStatus
    from agentlink.signing import LocalSigner, sign_vc

    doc = _read_document(args.file)
    vc = AgentVC.from_dict(doc, status=VCStatus.ISSUED)
    signed, _ = sign_vc(vc, LocalSigner.load(args.keyfile))
    signed_doc = signed.to_dict()

    if args.output:
        _write_document(signed_doc, args.output)

    result = {
        "vcId": signed.vc_id,
        "vcHash": vc_hash(signed_doc),
        "signerAddress": signed.signer_address,
        "signature": signed.signature,
        "document": signed_doc,
    }

    def human(d):
        print(f"✅ Signed {d['vcId']}")
        print(f"   Signer: {d['signerAddress']}")
        print(f"   Hash:   {d['vcHash']}")
        if args.output:
            print(f"   Saved to: {args.output}")

    _output(result, args, human)
    return result


def cmd_verify(args):
    """Verify a credential document from a JSON file or stdin."""
    from agentlink.credential import validate_vc_document
    from agentlink.signing import verify_vc

    doc = _read_document(args.file)
    problems = validate_vc_document(doc)
    if problems:
        raise ValueError("; ".join(problems))

    result = {"vcId": doc.get("vcId"), **verify_vc(doc).to_dict()}

    def human(d):
        if d["status"] == "valid":
            print(f"✅ VALID: {d['vcId']}")
        elif d["status"] == "unsigned":
            print(f"⚠️  UNSIGNED: {d['vcId']}")
        else:
            print(f"❌ INVALID: {d['vcId']}")
            print(f"   Recovered: {d['recoveredAddress']}")
        print(f"   Signer: {d['signerAddress']}")
        print(f"   Hash:   {d['vcHash']}")

    _output(result, args, human)
    return result


def cmd_summary(args):
    from agentlink.canonical import vc_hash
    from agentlink.credential import AgentVC, vc_summary

    doc = _read_document(args.file)
    result = vc_summary(AgentVC.from_dict(doc), vc_hash=vc_hash(doc))

    def human(d):
        proofs = [name for name, present in d["identityProofs"].items() if present]
        print(f"📄 {d['vcId']}")
        print(f"   Agent:       {d['agentId']}")
        print(f"   Proofs:      {', '.join(proofs)}")
        print(f"   Declaration: {d['declaration']}")
        print(f"   Signed:      {'yes' if d['isSigned'] else 'no'}")

    _output(result, args, human)
    return result


def cmd_serve(args):
    import uvicorn

    from agentlink.api import create_app

    uvicorn.run(create_app(), host=args.host, port=args.port)
    return {"host": args.host, "port": args.port}


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentlink",
        description="agentlink — agent-to-human link credentials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("keygen", help="Generate a signing key")
    p.add_argument("-o", "--output", default="agentlink-key.json", help="Key file to write")

    p = sub.add_parser("address", help="Show the address of a key file")
    p.add_argument("-k", "--keyfile", required=True, help="Key file")

    p = sub.add_parser("hash", help="Canonical hash of a credential")
    p.add_argument("file", help="Credential JSON file (- for stdin)")
    p.add_argument("--canonical", action="store_true", help="Also print the canonical form")

    p = sub.add_parser("sign", help="Sign a credential")
    p.add_argument("file", help="Credential JSON file (- for stdin)")
    p.add_argument("-k", "--keyfile", required=True, help="Signer key file")
    p.add_argument("-o", "--output", help="Save the signed credential to file")

    p = sub.add_parser("verify", help="Verify a credential signature")
    p.add_argument("file", help="Credential JSON file (- for stdin)")

    p = sub.add_parser("summary", help="Summarize a credential")
    p.add_argument("file", help="Credential JSON file (- for stdin)")

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: Optional[list[str]] = None) -> Optional[dict]:
    """CLI entry point. Returns result dict for testing."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse uses 2 for usage errors, which would read as "unsigned"
        if e.code:
            sys.exit(EXIT_ERROR)
        raise

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    commands = {
        "keygen": cmd_keygen,
        "address": cmd_address,
        "hash": cmd_hash,
        "sign": cmd_sign,
        "verify": cmd_verify,
        "summary": cmd_summary,
        "serve": cmd_serve,
    }

    try:
        return commands[args.command](args)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)
    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)


def run(argv: Optional[list[str]] = None):
    """Console script: a verification status becomes the exit code."""
    result = main(argv)
    if result is not None and "isValid" in result:
        sys.exit(EXIT_CODES[result["status"]])


if __name__ == "__main__":
    run()
