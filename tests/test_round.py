# tests/test_round.py
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import ME, OTHER, FakeLedger, note
from jackpot.clock import DeadlineClock, split
from jackpot.round import RoundController, chance_percent, win_chance
from util.clock import utc_now
from wager import ledger as q
from wager.errors import ValidationError


def entered(round_id, player, amount, index, total=None):
    payload = {"roundId": round_id, "entryIndex": index, "player": player, "amount": amount}
    if total is not None:
        payload["totalPool"] = total
    return note(q.JACKPOT_ENTERED, f"0xe{round_id}{index}", payload, player)


def drawn(round_id, winner, prize):
    return note(q.JACKPOT_DRAWN, f"0xd{round_id}", {"roundId": round_id, "winner": winner, "prizeAmount": prize})


def started(round_id, draw_ts):
    return note(q.NEW_JACKPOT_ROUND, f"0xn{round_id}", {"roundId": round_id, "startTime": 0, "drawTime": draw_ts})


@pytest.fixture
def ctl():
    c = RoundController(ME, FakeLedger(balance=50))
    c.apply_read(3, 100, utc_now() + timedelta(minutes=5))
    return c


def test_rollover_drops_previous_round_state(ctl):
    ctl.on_contributions([entered(3, ME, 10, 0, total=110)])
    assert ctl.round.pool_total == 110
    assert ctl.round.user_total == 10

    ctl.apply_read(4, 7, utc_now() + timedelta(minutes=10))
    r = ctl.round
    assert (r.round_id, r.pool_total, r.user_total, r.contributions) == (4, 7, 0, ())

    # 舊局事件晚到
    ctl.on_contributions([entered(3, ME, 10, 1, total=120)])
    assert ctl.round.pool_total == 7
    assert ctl.round.user_total == 0
    assert ctl.round.contributions == ()


def test_same_round_read_updates_in_place(ctl):
    ctl.on_contributions([entered(3, ME, 10, 0, total=110)])
    ctl.apply_read(3, 130, ctl.round.deadline)
    assert ctl.round.pool_total == 130
    assert ctl.round.user_total == 10
    assert len(ctl.round.contributions) == 1


def test_contribution_redelivery_is_deduplicated(ctl):
    e = entered(3, ME, 10, 0, total=110)
    ctl.on_contributions([e, e])
    ctl.on_contributions([e])
    assert len(ctl.round.contributions) == 1
    assert ctl.round.user_total == 10
    assert ctl.round.pool_total == 110


def test_other_players_grow_pool_only(ctl):
    ctl.on_contributions([entered(3, OTHER, 40, 0)])
    assert ctl.round.pool_total == 140
    assert ctl.round.user_total == 0
    ctl.on_contributions([entered(3, ME.upper().replace("0X", "0x"), 20, 1)])
    assert ctl.round.user_total == 20
    assert ctl.round.pool_total == 160


def test_round_started_notification(ctl):
    ts = int((utc_now() + timedelta(hours=1)).timestamp())
    ctl.on_round_started([started(2, ts)])
    assert ctl.round.round_id == 3

    ctl.on_contributions([entered(3, ME, 10, 0)])
    ctl.on_round_started([started(4, ts), started(5, ts)])
    r = ctl.round
    assert r.round_id == 5
    assert r.pool_total == 0
    assert r.user_total == 0
    assert int(r.deadline.timestamp()) == ts


def test_draw_records_winner_and_clears_round(ctl):
    ctl.on_contributions([entered(3, ME, 10, 0, total=110)])
    ctl.on_draws([drawn(3, ME, 110)])
    ctl.on_draws([drawn(3, ME, 110)])
    r = ctl.round
    assert r.contributions == ()
    assert r.user_total == 0
    assert len(r.recent_winners) == 1

    ctl.apply_read(4, 0, utc_now() + timedelta(minutes=5))
    assert ctl.round.recent_winners[0].round_id == 3


def test_recent_winners_are_capped():
    c = RoundController(ME, FakeLedger(), winners_capacity=2)
    c.apply_read(1, 0, None)
    for rid in range(1, 5):
        c.on_draws([drawn(rid, OTHER, rid)])
    assert [w.round_id for w in c.round.recent_winners] == [4, 3]


def test_win_chance_uses_post_contribution_pool(ctl):
    assert chance_percent(ctl.win_chance(20)) == Decimal("16.67")
    ctl.on_contributions([entered(3, ME, 20, 0, total=120)])
    assert ctl.round.user_total == 20
    assert ctl.round.pool_total == 120
    assert chance_percent(ctl.round.win_chance) == Decimal("16.67")


def test_win_chance_edges():
    assert win_chance(0, 100) == 0.0
    assert win_chance(10, 0) == 1.0
    c = RoundController(ME, FakeLedger())
    assert c.round.win_chance == 0.0


def test_countdown_is_derived_from_deadline(t0):
    deadline = t0 + timedelta(seconds=10)
    clock = DeadlineClock(deadline)
    for jitter in [0.0, 0.97, 2.31, 2.32, 5.999, 9.5, 10.0, 13.7]:
        now = t0 + timedelta(seconds=jitter)
        assert clock.remaining(now) == max(timedelta(0), deadline - now)
    assert DeadlineClock(None).remaining(t0) == timedelta(0)
    assert split(timedelta(seconds=3723)) == (1, 2, 3)


def test_tick_signals_close_once(t0):
    c = RoundController(ME, FakeLedger())
    c.apply_read(1, 0, t0 + timedelta(seconds=2))
    assert c.tick(t0 + timedelta(seconds=1.2)) == (timedelta(seconds=0.8), False)
    first = c.tick(t0 + timedelta(seconds=2.4))
    assert first.remaining == timedelta(0) and first.closed
    assert not c.tick(t0 + timedelta(seconds=3.4)).closed

    c.apply_read(2, 0, t0 + timedelta(seconds=5))
    assert not c.tick(t0 + timedelta(seconds=4)).closed
    assert c.tick(t0 + timedelta(seconds=5)).closed


@pytest.mark.asyncio
async def test_refresh_reads_authoritative_state():
    ts = int((utc_now() + timedelta(minutes=3)).timestamp())
    ledger = FakeLedger(values={q.Q_ROUND_ID: 8, q.Q_POOL: 250, q.Q_DRAW_TIME: ts})
    c = RoundController(ME, ledger)
    r = await c.refresh()
    assert (r.round_id, r.pool_total) == (8, 250)
    assert int(r.deadline.timestamp()) == ts


@pytest.mark.asyncio
async def test_contribution_checks(ctl):
    await ctl.check_contribution(50)
    with pytest.raises(ValidationError, match="positive"):
        await ctl.check_contribution(0)
    with pytest.raises(ValidationError, match="balance"):
        await ctl.check_contribution(51)
    with pytest.raises(ValidationError, match="ended"):
        await ctl.check_contribution(10, now=ctl.round.deadline)


@pytest.mark.asyncio
async def test_contribution_needs_loaded_round():
    c = RoundController(ME, FakeLedger())
    with pytest.raises(ValidationError, match="not loaded"):
        await c.check_contribution(10)


class GatedLedger(FakeLedger):
    """Holds the read path after the round id has been read."""

    def __init__(self, **kw):
        super().__init__(**kw)
        self.gate = asyncio.Event()
        self.round_read = asyncio.Event()

    async def read_value(self, query, *args):
        value = await super().read_value(query, *args)
        if query == q.Q_ROUND_ID:
            self.round_read.set()
            await self.gate.wait()
        return value


@pytest.mark.asyncio
async def test_slow_read_never_rolls_round_back():
    ts = int((utc_now() + timedelta(minutes=3)).timestamp())
    ledger = GatedLedger(values={q.Q_ROUND_ID: 3, q.Q_POOL: 100, q.Q_DRAW_TIME: ts})
    c = RoundController(ME, ledger)
    c.apply_read(3, 100, utc_now() + timedelta(minutes=1))

    pending = asyncio.ensure_future(c.refresh())
    await ledger.round_read.wait()
    c.on_round_started([started(4, ts)])
    c.on_contributions([entered(4, ME, 10, 0, total=10)])

    ledger.gate.set()
    r = await pending
    assert r.round_id == 4
    assert r.user_total == 10
    assert len(r.contributions) == 1

    c.on_contributions([entered(4, OTHER, 5, 1, total=15)])
    assert c.round.pool_total == 15


@pytest.mark.asyncio
async def test_refresh_reads_player_total():
    ts = int((utc_now() + timedelta(minutes=3)).timestamp())
    ledger = FakeLedger(values={q.Q_ROUND_ID: 3, q.Q_POOL: 120, q.Q_DRAW_TIME: ts, q.Q_PLAYER_TOTAL: 20})
    c = RoundController(ME, ledger)
    r = await c.refresh()
    assert r.user_total == 20
    assert chance_percent(r.win_chance) == Decimal("16.67")
    assert (q.Q_PLAYER_TOTAL, 3, ME) in ledger.reads

    # 事件累計較大時以事件為準
    c.on_contributions([entered(3, ME, 30, 0, total=150)])
    assert c.round.user_total == 30


def test_player_total_is_a_floor_per_round(ctl):
    ctl.apply_read(3, 100, ctl.round.deadline, player_total=25)
    ctl.on_contributions([entered(3, ME, 10, 0, total=110)])
    assert ctl.round.user_total == 25

    ctl.on_draws([drawn(3, OTHER, 110)])
    ctl.apply_read(3, 110, ctl.round.deadline, player_total=25)
    assert ctl.round.user_total == 0

    ctl.apply_read(4, 0, utc_now() + timedelta(minutes=5), player_total=0)
    assert ctl.round.user_total == 0


def test_stale_read_is_ignored(ctl):
    ctl.apply_read(2, 999, None, player_total=50)
    assert ctl.round.round_id == 3
    assert ctl.round.pool_total == 100
    assert ctl.round.user_total == 0
