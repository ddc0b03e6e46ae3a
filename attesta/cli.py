#!/usr/bin/env python3
"""
Attesta Command Line Interface

Usage:
    attesta keygen --output <key.json>
    attesta account --key <key.json> --owner <hex> [--policy <hex>] --output <account.json>
    attesta sign --key <key.json> --nonce <n> --action <action.json> --output <request.json>
    attesta verify --request <request.json> --account <account.json>
    attesta execute --request <request.json> --account <account.json> [--write]
    attesta policy --file <policy.json> [--amount <n> --now <ts>]
    attesta decode-account --record <hex>
    attesta hash --file <action.json>
"""

import argparse
import json
import sys

from pydantic import ValidationError

from .config import logging_settings
from .errors import AttestaError
from .logging_config import configure_logging, set_request_id


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def _emit(data: dict, output):
    if output:
        save_json(data, output)
        print(f"Saved to: {output}", file=sys.stderr)
    else:
        print(json.dumps(data, indent=2))


def cmd_keygen(args):
    """Generate a software passkey."""
    from .signing import SoftwarePasskey

    credential_id = bytes.fromhex(args.credential_id) if args.credential_id else None
    passkey = SoftwarePasskey.generate(credential_id, rp_id=args.rp_id)
    save_json(passkey.to_dict(), args.output)
    print(f"Passkey saved to: {args.output}", file=sys.stderr)
    print(f"Credential id: {passkey.credential_id.hex()}", file=sys.stderr)
    return 0


def cmd_account(args):
    """Create an account document bound to a passkey."""
    from .account import Account
    from .models import AccountModel
    from .signing import SoftwarePasskey

    passkey = SoftwarePasskey.from_dict(load_json(args.key))
    account = Account.create(
        owner=bytes.fromhex(args.owner),
        public_key=passkey.public_key,
        credential_id=passkey.credential_id,
        policy=bytes.fromhex(args.policy or ""),
        now=args.now,
    )
    _emit(AccountModel.from_account(account).model_dump(), args.output)
    return 0


def cmd_sign(args):
    """Sign an action request for a nonce."""
    from .hashing import action_digest
    from .signing import SoftwarePasskey

    key_data = load_json(args.key)
    passkey = SoftwarePasskey.from_dict(key_data)
    action = load_json(args.action)
    assertion = passkey.sign_nonce(args.nonce)

    request = {
        "assertion": assertion.to_dict(),
        "nonce": args.nonce,
        "amount": args.amount,
        "action": action,
        "message_hash": action_digest(action).hex(),
    }
    _emit(request, args.output)

    # Persist the authenticator counter.
    save_json(passkey.to_dict(), args.key)
    return 0


def cmd_verify(args):
    """Verify a signed request against an account without changing it."""
    from .models import AccountModel, ExecuteRequest

    request = ExecuteRequest.model_validate(load_json(args.request))
    account = AccountModel.model_validate(load_json(args.account)).to_account()

    try:
        verified = request.to_proof().verify(account)
    except AttestaError as e:
        print(f"✗ {e.code.value}", file=sys.stderr)
        if e.detail:
            print(f"  {e.detail}", file=sys.stderr)
        return 1

    print(json.dumps(verified.to_dict(), indent=2))
    print(f"✓ VERIFIED nonce {verified.nonce}", file=sys.stderr)
    return 0


def cmd_execute(args):
    """Run an action through proof verification and policy."""
    from .lifecycle import ActionContext, execute_action, system_clock
    from .models import AccountModel, ExecuteRequest

    request = ExecuteRequest.model_validate(load_json(args.request))
    account = AccountModel.model_validate(load_json(args.account)).to_account()
    now = args.now if args.now is not None else system_clock()
    try:
        context = ActionContext(amount=request.amount, now=now, approvals=request.approval_set())
        result = execute_action(account, request.to_proof(), context)
    except AttestaError as e:
        print(json.dumps(e.to_dict(), indent=2))
        print(f"✗ REJECTED: {e.code.value}", file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    if result.executed() and args.write:
        save_json(AccountModel.from_account(result.account).model_dump(), args.account)
        print(f"Account updated: nonce {result.account.nonce}", file=sys.stderr)
    print(f"✓ {result.outcome.value}", file=sys.stderr)
    return 0 if result.executed() else 2


def cmd_policy(args):
    """Encode a policy document and optionally evaluate it."""
    from .models import PolicyModel
    from .policy import evaluate_policy_bytes

    policy = PolicyModel.model_validate(load_json(args.file)).to_policy()
    record = policy.to_bytes()
    out = {"policy": policy.to_dict(), "record": record.hex()}

    if args.amount is not None:
        now = args.now if args.now is not None else 0
        out["result"] = evaluate_policy_bytes(record, args.amount, now).value

    print(json.dumps(out, indent=2))
    return 0


def cmd_decode_account(args):
    """Decode a persisted account record."""
    from .account import Account

    try:
        account = Account.from_record(bytes.fromhex(args.record))
    except AttestaError as e:
        print(f"✗ {e.code.value}: {e.detail}", file=sys.stderr)
        return 1
    print(json.dumps(account.to_dict(), indent=2))
    return 0


def cmd_hash(args):
    """Compute the message hash of an action document."""
    from .hashing import action_digest

    print(f"message_hash: {action_digest(load_json(args.file)).hex()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="attesta",
        description="Attesta passkey authorization CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  attesta keygen -o passkey.json
  attesta account -k passkey.json --owner <64 hex chars> -o account.json
  attesta sign -k passkey.json -n 1 -a action.json -o request.json
  attesta execute -r request.json -A account.json --write
  attesta policy -s spending_limit.json --amount 500
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate a software passkey")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output key file")
    keygen_parser.add_argument("-c", "--credential-id", help="Credential id (hex)")
    keygen_parser.add_argument("--rp-id", default="attesta.local", help="Relying party id")

    account_parser = subparsers.add_parser("account", help="Create an account document")
    account_parser.add_argument("-k", "--key", required=True, help="Passkey JSON file")
    account_parser.add_argument("--owner", required=True, help="Owner identity (32 bytes hex)")
    account_parser.add_argument("-p", "--policy", help="Policy record (hex)")
    account_parser.add_argument("--now", type=int, default=0, help="Creation timestamp")
    account_parser.add_argument("-o", "--output", help="Output account file")

    sign_parser = subparsers.add_parser("sign", help="Sign an action request")
    sign_parser.add_argument("-k", "--key", required=True, help="Passkey JSON file")
    sign_parser.add_argument("-n", "--nonce", required=True, type=int, help="Nonce to authorize")
    sign_parser.add_argument("-a", "--action", required=True, help="Action JSON file")
    sign_parser.add_argument("--amount", type=int, default=0, help="Amount for policy evaluation")
    sign_parser.add_argument("-o", "--output", help="Output request file")

    verify_parser = subparsers.add_parser("verify", help="Verify a signed request")
    verify_parser.add_argument("-r", "--request", required=True, help="Request JSON file")
    verify_parser.add_argument("-A", "--account", required=True, help="Account JSON file")

    execute_parser = subparsers.add_parser("execute", help="Verify and gate a signed request")
    execute_parser.add_argument("-r", "--request", required=True, help="Request JSON file")
    execute_parser.add_argument("-A", "--account", required=True, help="Account JSON file")
    execute_parser.add_argument("--now", type=int, help="Evaluation timestamp")
    execute_parser.add_argument("-w", "--write", action="store_true", help="Save the advanced account")

    policy_parser = subparsers.add_parser("policy", help="Encode and evaluate a policy")
    policy_parser.add_argument("-f", "--file", required=True, help="Policy JSON file")
    policy_parser.add_argument("--amount", type=int, help="Amount to evaluate")
    policy_parser.add_argument("--now", type=int, help="Evaluation timestamp")

    decode_parser = subparsers.add_parser("decode-account", help="Decode an account record")
    decode_parser.add_argument("--record", required=True, help="Account record (hex)")

    hash_parser = subparsers.add_parser("hash", help="Compute an action message hash")
    hash_parser.add_argument("-f", "--file", required=True, help="Action JSON file")

    return parser


COMMANDS = {
    "keygen": cmd_keygen,
    "account": cmd_account,
    "sign": cmd_sign,
    "verify": cmd_verify,
    "execute": cmd_execute,
    "policy": cmd_policy,
    "decode-account": cmd_decode_account,
    "hash": cmd_hash,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = logging_settings()
    configure_logging(settings["level"], json_format=settings["json_format"], log_file=settings["log_file"])
    set_request_id()

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args)
    except ValidationError as e:
        print(f"✗ Invalid document: {e}", file=sys.stderr)
        return 1
    except (AttestaError, ValueError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
