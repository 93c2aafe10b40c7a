#!/usr/bin/env python3
"""
Simple example of using the SplitSafe SDK.
"""
import asyncio
import os

from splitsafe_sdk import EscrowClient, SplitSafeConfig
from splitsafe_sdk.identity import Principal
from splitsafe_sdk.ledger import InMemoryLedgerTransport

SENDER = Principal.from_bytes(bytes(range(1, 11))).to_text()
RECIPIENT = Principal.from_bytes(bytes(range(21, 31))).to_text()


def demo_ledger():
    """An in-memory ledger holding one pending basic escrow."""
    return InMemoryLedgerTransport([{
        "id": "demo-1",
        "kind": {"basic_escrow": None},
        "status": {"pending": None},
        "title": "Logo design",
        "from": SENDER,
        "to": [{
            "principal": RECIPIENT,
            "name": "Designer",
            "amount": 25_000_000,
            "percentage": 100,
            "status": {"pending": None},
            "approvedAt": [],
            "declinedAt": [],
        }],
        "funds_allocated": 25_000_000,
        "createdAt": 1_750_000_000_000_000_000,
    }])


async def run(client):
    """
    Demonstrate basic usage of the EscrowClient.

    This example shows how to:
    1. List an actor's escrows
    2. Inspect the derived view state
    3. Approve as a recipient and release as the sender
    """
    await client.list_transactions(SENDER)
    view = client.view("demo-1", RECIPIENT)
    print(f"{view.transaction.title}: step {view.step}, {view.subtitle}")
    print(f"Recipient share: {view.share.amount} BTC ({view.share.percentage}%)")

    outcome = await client.approve("demo-1", RECIPIENT)
    print(f"Approve: {outcome.state.value}, status now {outcome.transaction.status.value}")

    outcome = await client.release("demo-1")
    print(f"Release: {outcome.state.value} ({outcome.confidence.value})")


def main():
    # Point SPLITSAFE_LEDGER_URL at a ledger gateway to run against it instead
    if os.environ.get("SPLITSAFE_LEDGER_URL"):
        client = EscrowClient.from_config(SplitSafeConfig.from_env())
    else:
        client = EscrowClient(demo_ledger(), config=SplitSafeConfig(retry_delay_ms=100))

    with client:
        try:
            asyncio.run(run(client))
        except Exception as e:
            print(f"Error: {str(e)}")


if __name__ == "__main__":
    main()
