import argparse
import asyncio
import logging

from uuid6 import uuid7

from src.crud import CreateData
from src.db import Session, engine
from src.services.ledger import SqlLedger


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Add credits to a participant balance")
    parser.add_argument("--username", type=str, help="Participant id", required=True)
    parser.add_argument("--amount", type=int, help="Credits to add", required=True)
    parser.add_argument(
        "--key",
        type=str,
        help="Idempotency key, rerunning with the same key does not credit twice",
        default=None,
    )
    return parser


async def add_credits(ledger: SqlLedger, username: str, amount: int, key: str | None = None) -> int:
    """Credit a participant and return the new balance"""
    key = key or f"admin:{uuid7()}"
    await ledger.credit(username, amount, key, "admin credit")
    return await ledger.balance(username)


async def main(username: str, amount: int, key: str | None):
    await CreateData.create_table(engine)
    balance = await add_credits(SqlLedger(Session), username, amount, key)
    logging.info(f"{username} balance: {balance}")
    print(username, balance)
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    args = get_parser().parse_args()
    asyncio.run(main(args.username, args.amount, args.key))
