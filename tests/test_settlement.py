import asyncio
import hashlib

import pytest
from conftest import FlakyLedger, LostAckStore

from src.domain.errors import (
    GameNotOpen,
    InsufficientFunds,
    InvalidInput,
    InvalidTransition,
    PayoutFailed,
)
from src.domain.game_rules import build_client_seed
from src.models.dc_models import CoinSide, GameKind, GameState
from src.services.ledger import payout_key
from src.services.settlement import SettlementMachine


async def open_coinflip(harness, stake=10):
    await harness.fund("maker", 100)
    await harness.fund("taker", 100)
    return await harness.machine.create_coinflip("maker", stake, CoinSide.heads)


async def payouts_of(harness, game):
    rows = await harness.ledger.transactions(game.winner_id)
    return [row for row in rows if row.idempotency_key == payout_key(game.game_id)]


def test_create_commits_before_entries(harness):
    async def scenario():
        game = await open_coinflip(harness)
        return game, await harness.ledger.balance("maker")

    game, balance = asyncio.run(scenario())
    assert game.state == GameState.open
    assert game.secret_commitment == hashlib.sha256(game.secret.encode()).hexdigest()
    assert [entry.participant_id for entry in game.entries] == ["maker"]
    assert game.total_stake == 10
    assert balance == 90
    assert harness.publisher.names(game.game_id)[:2] == ["entry_added", "created"]


def test_join_plays_the_game_out(harness):
    async def scenario():
        game = await open_coinflip(harness)
        settled = await harness.machine.join_coinflip(game.game_id, "taker")
        balances = {pid: await harness.ledger.balance(pid) for pid in ("maker", "taker")}
        return game, settled, balances

    game, settled, balances = asyncio.run(scenario())
    assert settled.state == GameState.settled
    assert settled.entries[1].choice == CoinSide.tails
    assert settled.client_seed == "makerchoiceheads-takerchoicetails"
    assert settled.winner_id in ("maker", "taker")
    loser = "taker" if settled.winner_id == "maker" else "maker"
    assert balances[settled.winner_id] == 110
    assert balances[loser] == 90
    assert sum(balances.values()) == 200
    assert harness.publisher.names(game.game_id)[-3:] == ["locked", "resolved", "settled"]


def test_cannot_join_own_game(harness):
    async def scenario():
        game = await open_coinflip(harness)
        with pytest.raises(InvalidInput):
            await harness.machine.join_coinflip(game.game_id, "maker")
        return await harness.ledger.balance("maker")

    assert asyncio.run(scenario()) == 90


def test_join_without_funds_leaves_game_open(harness):
    async def scenario():
        game = await open_coinflip(harness, stake=50)
        with pytest.raises(InsufficientFunds):
            await harness.machine.join_coinflip(game.game_id, "broke")
        return await harness.machine.get_game(game.game_id)

    game = asyncio.run(scenario())
    assert game.state == GameState.open
    assert game.entry_count == 1


def test_no_entries_after_settlement(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.join_coinflip(game.game_id, "taker")
        await harness.fund("late", 100)
        with pytest.raises(GameNotOpen):
            await harness.machine.add_entry(game.game_id, "late", 10, choice=CoinSide.tails)
        return await harness.ledger.balance("late")

    assert asyncio.run(scenario()) == 100


def test_entry_rejected_by_the_store_is_refunded(harness):
    async def scenario():
        game = await open_coinflip(harness)
        stale = await harness.machine.get_game(game.game_id)
        await harness.machine.lock(game.game_id)

        async def stale_read(_):
            return stale

        harness.machine.get_game = stale_read
        with pytest.raises(GameNotOpen):
            await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        return await harness.ledger.balance("taker")

    assert asyncio.run(scenario()) == 100


def test_locked_entry_list_is_what_gets_resolved(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        locked = await harness.machine.lock(game.game_id)
        await harness.fund("late", 100)
        with pytest.raises(GameNotOpen):
            await harness.machine.add_entry(game.game_id, "late", 10, choice=CoinSide.heads)
        resolved = await harness.machine.resolve(game.game_id)
        return locked, resolved, await harness.ledger.balance("late")

    locked, resolved, balance = asyncio.run(scenario())
    assert [e.model_dump() for e in resolved.entries] == [e.model_dump() for e in locked.entries]
    assert resolved.total_stake == locked.total_stake == 20
    assert resolved.client_seed == build_client_seed(locked.entries, GameKind.binary)
    assert balance == 100


def lost_ack_machine(harness, lost_acks):
    store = LostAckStore(harness.store, lost_acks)
    return SettlementMachine(store, harness.ledger, harness.publisher, harness.settings, harness.error_log)


@pytest.mark.parametrize("lost_acks", [1, 10])
def test_committed_entry_is_kept_when_the_acknowledgement_is_lost(harness, lost_acks):
    machine = lost_ack_machine(harness, lost_acks)

    async def scenario():
        game = await open_coinflip(harness)
        entry = await machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        stored = await harness.machine.get_game(game.game_id)
        balance = await harness.ledger.balance("taker")
        rows = await harness.ledger.transactions("taker")
        await harness.machine.cancel(game.game_id)
        return entry, stored, balance, rows, await harness.ledger.balance("taker")

    entry, stored, balance, rows, after_cancel = asyncio.run(scenario())
    assert [e.participant_id for e in stored.entries] == ["maker", "taker"]
    assert entry.entry_id == stored.entries[1].entry_id
    assert stored.entry_count == 2
    assert stored.total_stake == 20
    assert balance == 90
    assert not any(":reject:" in row.idempotency_key for row in rows)
    assert after_cancel == 100


def test_resolve_and_settle_are_idempotent(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        await harness.machine.lock(game.game_id)
        first = await harness.machine.resolve(game.game_id)
        second = await harness.machine.resolve(game.game_id)
        settled = await harness.machine.settle(game.game_id)
        again = await harness.machine.settle(game.game_id)
        return first, second, settled, again, await payouts_of(harness, settled)

    first, second, settled, again, payouts = asyncio.run(scenario())
    assert first.outcome == second.outcome == settled.outcome
    assert first.derivation_hash == second.derivation_hash
    assert again.settled_at == settled.settled_at
    assert len(payouts) == 1


def test_concurrent_resolution_records_one_outcome(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        await harness.machine.lock(game.game_id)
        results = await asyncio.gather(*(harness.machine.resolve(game.game_id) for _ in range(3)))
        return results, [name for name in harness.publisher.names(game.game_id) if name == "resolved"]

    results, resolved_events = asyncio.run(scenario())
    assert len({game.outcome for game in results}) == 1
    assert all(game.state == GameState.resolved for game in results)
    assert len(resolved_events) == 1


def test_cancel_refunds_every_participant(harness):
    async def scenario():
        game = await open_coinflip(harness, stake=25)
        cancelled = await harness.machine.cancel(game.game_id)
        again = await harness.machine.cancel(game.game_id)
        with pytest.raises(GameNotOpen):
            await harness.machine.join_coinflip(game.game_id, "taker")
        return cancelled, again, await harness.ledger.balance("maker")

    cancelled, again, balance = asyncio.run(scenario())
    assert cancelled.state == GameState.cancelled
    assert again.state == GameState.cancelled
    assert cancelled.outcome is None
    assert balance == 100


def test_resolved_game_cannot_be_cancelled(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        await harness.machine.lock(game.game_id)
        await harness.machine.resolve(game.game_id)
        with pytest.raises(InvalidTransition):
            await harness.machine.cancel(game.game_id)
        return await harness.machine.get_game(game.game_id)

    assert asyncio.run(scenario()).state == GameState.resolved


def test_cancel_request_blocks_resolution(harness):
    async def scenario():
        game = await open_coinflip(harness)
        await harness.machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        await harness.store.request_cancel(game.game_id)
        with pytest.raises(InvalidTransition):
            await harness.machine.resolve(game.game_id)
        return await harness.machine.cancel(game.game_id)

    assert asyncio.run(scenario()).state == GameState.cancelled


def test_transient_payout_failures_are_retried(harness):
    flaky = FlakyLedger(harness.ledger, fail_credits=2)
    machine = harness.build_machine(flaky)

    async def scenario():
        game = await open_coinflip(harness)
        await machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        settled = await machine.complete(game.game_id)
        return settled, await payouts_of(harness, settled)

    settled, payouts = asyncio.run(scenario())
    assert settled.state == GameState.settled
    assert flaky.credit_attempts == 3
    assert len(payouts) == 1


def test_exhausted_payout_leaves_game_resolved(harness):
    flaky = FlakyLedger(harness.ledger, fail_credits=3)
    machine = harness.build_machine(flaky)

    async def scenario():
        game = await open_coinflip(harness)
        await machine.add_entry(game.game_id, "taker", 10, choice=CoinSide.tails)
        with pytest.raises(PayoutFailed):
            await machine.complete(game.game_id)
        pending = await machine.get_game(game.game_id)
        settled = await machine.settle(game.game_id)
        return pending, settled, await payouts_of(harness, settled)

    pending, settled, payouts = asyncio.run(scenario())
    assert pending.state == GameState.resolved
    assert pending.payout_failures == 1
    assert harness.error_log.get_errors("coinflip")[0].error == "Payout failed"
    assert settled.state == GameState.settled
    assert settled.outcome == pending.outcome
    assert len(payouts) == 1


def test_jackpot_countdown_and_threshold(harness):
    async def scenario():
        for pid in ("a", "b", "c"):
            await harness.fund(pid, 1000)
        jackpot = await harness.machine.create_jackpot()
        after_a = await harness.machine.buy_tickets(jackpot.game_id, "a", 1)
        after_b = await harness.machine.buy_tickets(jackpot.game_id, "b", 2)
        after_c = await harness.machine.buy_tickets(jackpot.game_id, "c", 7, seed="c-seed")
        return after_a, after_b, after_c

    after_a, after_b, after_c = asyncio.run(scenario())
    assert after_a.timer_start_at is None
    assert after_b.timer_start_at is not None
    assert after_c.timer_end_at == after_b.timer_end_at
    assert after_c.total_stake == 100
    assert after_c.game_kind == GameKind.weighted
    assert after_c.state == GameState.open


def test_jackpot_settles_to_a_participant(harness, settings):
    settings.jackpot_max_entries = 3

    async def scenario():
        for pid in ("a", "b"):
            await harness.fund(pid, 1000)
        jackpot = await harness.machine.create_jackpot()
        await harness.machine.buy_tickets(jackpot.game_id, "a", 1)
        await harness.machine.buy_tickets(jackpot.game_id, "b", 2)
        settled = await harness.machine.buy_tickets(jackpot.game_id, "a", 3)
        balances = {pid: await harness.ledger.balance(pid) for pid in ("a", "b")}
        return settled, balances

    settled, balances = asyncio.run(scenario())
    assert settled.state == GameState.settled
    assert settled.client_seed == "aamount10-bamount20-aamount30"
    assert settled.winner_id in ("a", "b")
    assert sum(balances.values()) == 2000
    paid = {"a": 40, "b": 20}
    assert balances[settled.winner_id] == 1000 - paid[settled.winner_id] + 60


def test_jackpot_refunds_are_aggregated_per_participant(harness):
    async def scenario():
        for pid in ("a", "b"):
            await harness.fund(pid, 1000)
        jackpot = await harness.machine.create_jackpot()
        await harness.machine.buy_tickets(jackpot.game_id, "a", 1)
        await harness.machine.buy_tickets(jackpot.game_id, "a", 4)
        await harness.machine.buy_tickets(jackpot.game_id, "b", 2)
        await harness.machine.cancel(jackpot.game_id)
        rows = await harness.ledger.transactions("a")
        return [row for row in rows if ":refund:" in row.idempotency_key], await harness.ledger.balance("a")

    refunds, balance = asyncio.run(scenario())
    assert [row.amount for row in refunds] == [50]
    assert balance == 1000


def test_tickets_only_for_jackpots(harness):
    async def scenario():
        game = await open_coinflip(harness)
        with pytest.raises(InvalidInput):
            await harness.machine.buy_tickets(game.game_id, "taker", 1)
        with pytest.raises(InvalidInput):
            await harness.machine.buy_tickets(game.game_id, "taker", 0)

    asyncio.run(scenario())
