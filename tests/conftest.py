# tests/conftest.py
import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from wager.models import ResultNotification

ME = "0x" + "a" * 40
OTHER = "0x" + "b" * 40
UNIT = 10**18

T0 = datetime(2025, 5, 1, 12, 0, 0, tzinfo=pytz.utc)


def note(event, tx, payload, player=None):
    return ResultNotification(event=event, transaction_id=tx, payload=payload, player=player)


class FakeLedger:
    """Scriptable stand-in for the ledger collaborator."""

    def __init__(self, submit_error=None, confirm_error=None, balance=10 * UNIT, values=None, balance_error=None):
        self.balance_error = balance_error
        self.submit_error = submit_error
        self.confirm_error = confirm_error
        self.balance = balance
        self.values = dict(values or {})
        self.submitted = []
        self.confirm_gate = None
        self.subscriptions = []
        self.reads = []
        self._n = 0

    async def submit_wager(self, kind, parameters, stake):
        self.submitted.append((kind, parameters, stake))
        if self.submit_error is not None:
            raise self.submit_error
        self._n += 1
        return f"0xtx{self._n}"

    async def await_confirmation(self, transaction_id):
        if self.confirm_gate is not None:
            await self.confirm_gate.wait()
        if self.confirm_error is not None:
            raise self.confirm_error

    def subscribe_results(self, event):
        self.subscriptions.append(event)
        return self._never()

    async def _never(self):
        await asyncio.Event().wait()
        yield []

    async def read_value(self, query, *args):
        self.reads.append((query,) + args)
        return self.values.get(query)

    async def read_balance(self, identity):
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance


class FakeJournal:
    def __init__(self, pending=None):
        self.records = []
        self._pending = pending

    async def record(self, wager):
        self.records.append(wager)

    async def pending(self, identity, kind):
        return self._pending


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def later():
    return lambda secs: T0 + timedelta(seconds=secs)
