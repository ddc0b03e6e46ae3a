#!/usr/bin/env python3
"""
Attesta Example - Passkey-Authorized Payments

Walks one account through registration, an allowed payment, a replayed
request, an over-limit request, a second device and a multi-signer policy.

Run with: python examples/passkey_payment.py
"""

from typing import Any, Dict

from attesta import (
    AccountService,
    AuthorizationProof,
    InMemoryAccountStore,
    Policy,
    PolicyDeniedError,
    ReplayError,
    SoftwarePasskey,
    action_digest,
)
from attesta.logging_config import configure_logging


def payment(nonce: int, amount: int, payee: str) -> Dict[str, Any]:
    """
    The action document the user approves on their device.

    In production this is rendered by the wallet UI and hashed client-side.
    """
    return {"op": "payment", "amount": amount, "payee": payee, "nonce": nonce}


def authorize(passkey: SoftwarePasskey, nonce: int, action: Dict[str, Any]) -> AuthorizationProof:
    """Simulates navigator.credentials.get() over the nonce challenge."""
    return AuthorizationProof(passkey.sign_nonce(nonce), nonce, action_digest(action))


def main():
    configure_logging("WARNING", json_format=False)

    print("=" * 70)
    print("Attesta Passkey Payments - Example")
    print("=" * 70)

    # =========================================================================
    # SETUP
    # =========================================================================

    print("\n[SETUP] Registering account with a 1,000 unit spending limit...")

    owner = b"\x42" * 32
    phone = SoftwarePasskey.generate(credential_id=b"phone-passkey")
    service = AccountService(InMemoryAccountStore())
    address = service.register_account(
        owner,
        phone.public_key,
        phone.credential_id,
        Policy.spending_limit(1_000).to_bytes(),
    )
    print(f"  Account address: {address.hex()[:16]}...")
    print(f"  Policy: {service.load(address).decoded_policy().to_dict()}")

    # =========================================================================
    # SCENARIO 1: Allowed payment
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 1: Payment within the limit")
    print("-" * 70)

    first = authorize(phone, 1, payment(1, 250, "alice"))
    result = service.execute(address, first, amount=250)
    print(f"  Outcome: {result.outcome.value}, nonce now {service.load(address).nonce}")

    # =========================================================================
    # SCENARIO 2: Replay
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 2: Same signed request submitted again")
    print("-" * 70)

    try:
        service.execute(address, first, amount=250)
    except ReplayError as e:
        print(f"  Rejected: {e.code.value}")

    # =========================================================================
    # SCENARIO 3: Over the limit
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 3: Payment above the spending limit")
    print("-" * 70)

    try:
        service.execute(address, authorize(phone, 2, payment(2, 5_000, "bob")), amount=5_000)
    except PolicyDeniedError as e:
        print(f"  Rejected: {e.code.value}, nonce still {service.load(address).nonce}")

    # =========================================================================
    # SCENARIO 4: Second device
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 4: Laptop passkey added by the owner")
    print("-" * 70)

    laptop = SoftwarePasskey.generate(credential_id=b"laptop-passkey")
    service.add_credential(address, owner, laptop.public_key, laptop.credential_id, "laptop")
    result = service.execute(address, authorize(laptop, 2, payment(2, 100, "carol")), amount=100)
    print(f"  Outcome: {result.outcome.value} via {result.verified.credential_id.decode()}")
    print(f"  Registry: {len(service.load_registry(address))} credentials")

    # =========================================================================
    # SCENARIO 5: Multi-signer policy
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 5: Policy requiring a co-signer")
    print("-" * 70)

    cosigner = b"\x07" * 32
    service.update_policy(address, owner, Policy.multi_sig([cosigner]).to_bytes())

    request = authorize(phone, 3, payment(3, 10, "dave"))
    result = service.execute(address, request, amount=10)
    print(f"  Without approval: {result.outcome.value}")
    result = service.execute(address, request, amount=10, approvals=[cosigner])
    print(f"  With approval: {result.outcome.value}, nonce now {service.load(address).nonce}")

    print("\n" + "=" * 70)


if __name__ == "__main__":
    main()
