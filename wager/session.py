# wager/session.py
"""
Wager lifecycle: idle -> submitting -> awaiting_confirmation
-> awaiting_resolution -> resolved, with failed reachable from the three
middle states.

`transition()` is pure: (wager, event) -> (wager, effects). `WagerSession`
drives it from the ledger collaborator and result subscriptions and runs
the effects (history append, round refresh, journal).
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from util.clock import utc_now

from .correlator import EventCorrelator
from .errors import ConfirmationError, SubmissionError, ValidationError
from .games import get_game, validate_parameters
from .history import HistoryLedger
from .models import HistoryEntry, ResultNotification, Wager, WagerStatus

logger = logging.getLogger(__name__)

# 只留最近幾筆失敗訊息
FAILURE_MEMORY = 10


# ===== 事件 =====

@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class Submitted:
    transaction_id: str


@dataclass(frozen=True)
class SubmissionFailed:
    message: str


@dataclass(frozen=True)
class Confirmed:
    pass


@dataclass(frozen=True)
class ConfirmationFailed:
    message: str


@dataclass(frozen=True)
class ResultMatched:
    notification: ResultNotification


# ===== 副作用 =====

@dataclass(frozen=True)
class AppendHistory:
    entry: HistoryEntry


@dataclass(frozen=True)
class RefreshRound:
    round_id: Optional[int]


@dataclass(frozen=True)
class ReportFailure:
    message: str


def _move(wager: Wager, status: WagerStatus, **changes) -> Wager:
    return wager.model_copy(update={"status": status, "updated_at": utc_now(), **changes})


def transition(wager: Wager, event) -> Tuple[Wager, List[Any]]:
    s = wager.status

    if isinstance(event, Start) and s is WagerStatus.IDLE:
        return _move(wager, WagerStatus.SUBMITTING), []

    if isinstance(event, Submitted) and s is WagerStatus.SUBMITTING:
        return _move(wager, WagerStatus.AWAITING_CONFIRMATION, transaction_id=event.transaction_id), []

    if isinstance(event, SubmissionFailed) and s is WagerStatus.SUBMITTING:
        return _move(wager, WagerStatus.FAILED, error=event.message), [ReportFailure(event.message)]

    if isinstance(event, Confirmed) and s is WagerStatus.AWAITING_CONFIRMATION:
        return _move(wager, WagerStatus.AWAITING_RESOLUTION), []

    # 晚到的確認錯誤也可能在 awaiting_resolution 出現
    if isinstance(event, ConfirmationFailed) and s in (
        WagerStatus.AWAITING_CONFIRMATION,
        WagerStatus.AWAITING_RESOLUTION,
    ):
        return _move(wager, WagerStatus.FAILED, error=event.message), [ReportFailure(event.message)]

    if (
        isinstance(event, ResultMatched)
        and s is WagerStatus.AWAITING_RESOLUTION
        and event.notification.transaction_id == wager.transaction_id
    ):
        game = get_game(wager.kind)
        try:
            outcome = game.decode(event.notification.payload, wager.identity)
        except (KeyError, ValueError, TypeError, IndexError) as e:
            msg = f"malformed {event.notification.event} result: {e!r}"
            return _move(wager, WagerStatus.FAILED, error=msg), [ReportFailure(msg)]
        resolved = _move(wager, WagerStatus.RESOLVED, outcome=outcome)
        effects: List[Any] = [AppendHistory(HistoryEntry.from_wager(resolved))]
        if game.pooled:
            effects.append(RefreshRound(wager.round_id))
        return resolved, effects

    # 其他組合一律不動（重送、亂序都在這裡被擋掉）
    return wager, []


class WagerSession:
    """One game's single-flight wager plus its history."""

    def __init__(
        self,
        kind: str,
        ledger,
        history: HistoryLedger,
        identity: str,
        round_controller=None,
        journal=None,
        on_refresh: Optional[Callable[[Optional[int]], Any]] = None,
    ):
        self.game = get_game(kind)
        self.kind = self.game.kind
        self.ledger = ledger
        self.history = history
        self.identity = identity
        self.round_controller = round_controller
        self.journal = journal
        self.on_refresh = on_refresh
        self.correlator = EventCorrelator(identity)
        self.failures: deque = deque(maxlen=FAILURE_MEMORY)

        self._wager: Optional[Wager] = None
        self._early: Optional[ResultNotification] = None
        self._busy = False
        self._done = asyncio.Event()
        self._tasks: set = set()
        self._journal_lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Wager]:
        return self._wager

    @property
    def in_flight(self) -> bool:
        return self._busy or (self._wager is not None and not self._wager.terminal)

    def pending_for(self, now: datetime) -> float:
        """Seconds the current wager has been outstanding, 0 when none is."""
        if self._wager is None or self._wager.terminal:
            return 0.0
        return max(0.0, (now - self._wager.created_at).total_seconds())

    # ===== 下注 =====

    async def place_wager(self, stake: int, parameters: Optional[Dict[str, Any]] = None) -> Wager:
        if not self.identity:
            raise ValidationError("no active session identity")
        if self.in_flight:
            raise ValidationError("a wager is already in flight")
        if isinstance(stake, bool) or not isinstance(stake, int) or stake <= 0:
            raise ValidationError("stake must be a positive integer")
        params = validate_parameters(self.kind, parameters)

        self._busy = True
        try:
            round_id = None
            if self.game.pooled:
                if self.round_controller is None:
                    raise ValidationError("pooled game needs a round controller")
                await self.round_controller.check_contribution(stake)
                round_id = self.round_controller.round.round_id

            self._wager = Wager(
                kind=self.kind,
                stake=stake,
                parameters=params,
                identity=self.identity,
                round_id=round_id,
            )
            self._early = None
            self._done = asyncio.Event()
            self._apply(Start())

            await self._submit()
            if self._wager.status is WagerStatus.AWAITING_CONFIRMATION:
                await self._confirm()
            return self._wager
        finally:
            self._busy = False

    async def _submit(self) -> None:
        w = self._wager
        try:
            tx = await self.ledger.submit_wager(w.kind, dict(w.parameters), w.stake)
        except SubmissionError as e:
            logger.warning("[%s] submission rejected: %s", self.kind, e)
            self._apply(SubmissionFailed(str(e)))
            return
        except Exception as e:
            logger.exception("[%s] submission fault", self.kind)
            self._apply(SubmissionFailed(f"submission failed: {e}"))
            return
        self.correlator.track(tx)
        self._apply(Submitted(tx))
        logger.info("[%s] submitted %s stake=%s", self.kind, tx, w.stake)

    async def _confirm(self) -> None:
        tx = self._wager.transaction_id
        try:
            await self.ledger.await_confirmation(tx)
        except ConfirmationError as e:
            logger.warning("[%s] confirmation failed for %s: %s", self.kind, tx, e)
            self._apply(ConfirmationFailed(str(e)))
            return
        except Exception as e:
            logger.exception("[%s] confirmation fault for %s", self.kind, tx)
            self._apply(ConfirmationFailed(f"confirmation failed: {e}"))
            return
        self._apply(Confirmed())
        logger.info("[%s] confirmed %s", self.kind, tx)

        # 結果比確認先到：先暫存，確認後再套用
        if self._early is not None:
            early, self._early = self._early, None
            self._apply(ResultMatched(early))

    # ===== 事件輸入 =====

    def on_results(self, batch: List[ResultNotification]) -> Optional[Wager]:
        matched = self.correlator.match(batch)
        if matched is None:
            for n in self.correlator.orphans(batch):
                logger.debug("[%s] untracked result %s ignored", self.kind, n.transaction_id)
            return None
        w = self._wager
        if w is not None and w.status is WagerStatus.AWAITING_CONFIRMATION:
            self._early = matched
            return w
        self._apply(ResultMatched(matched))
        return self._wager

    def on_failure(self, message: str) -> Optional[Wager]:
        """External error for the tracked transaction (e.g. a late receipt failure)."""
        self._apply(ConfirmationFailed(message))
        return self._wager

    async def resolution(self) -> Optional[Wager]:
        await self._done.wait()
        return self._wager

    def reset(self) -> None:
        """Leaving the game: drop history and a finished wager. In-flight wagers stay tracked."""
        self.history.clear()
        self.failures.clear()
        if self._wager is not None and self._wager.terminal:
            self._wager = None

    async def recover(self) -> Optional[Wager]:
        """Resume the newest unfinished wager from the journal after a restart."""
        if self.journal is None or self._wager is not None:
            return None
        try:
            w = await self.journal.pending(self.identity, self.kind)
        except Exception:
            logger.exception("[%s] journal read failed", self.kind)
            return None
        if w is None:
            return None
        logger.info("[%s] recovered %s in %s", self.kind, w.transaction_id, w.status.value)
        self._wager = w
        self._done = asyncio.Event()
        self.correlator.track(w.transaction_id)
        if w.status is WagerStatus.AWAITING_CONFIRMATION:
            await self._confirm()
        return self._wager

    # ===== 內部 =====

    def _apply(self, event) -> None:
        if self._wager is None:
            return
        new, effects = transition(self._wager, event)
        if new is self._wager:
            return
        self._wager = new
        if new.transaction_id and self.journal is not None:
            self._spawn(self._write_journal(new))
        for eff in effects:
            self._run(eff)
        if new.terminal:
            self.correlator.release()
            self._done.set()

    def _run(self, eff) -> None:
        if isinstance(eff, AppendHistory):
            self.history.append(eff.entry)
        elif isinstance(eff, ReportFailure):
            self.failures.append(eff.message)
        elif isinstance(eff, RefreshRound) and self.on_refresh is not None:
            result = self.on_refresh(eff.round_id)
            if inspect.isawaitable(result):
                self._spawn(result)

    def _spawn(self, aw) -> None:
        task = asyncio.ensure_future(aw)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write_journal(self, wager: Wager) -> None:
        # 依狀態變化的順序寫入
        async with self._journal_lock:
            try:
                await self.journal.record(wager)
            except Exception:
                logger.exception("[%s] journal write failed for %s", self.kind, wager.transaction_id)

    async def flush(self) -> None:
        """Wait for pending journal writes and refresh requests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
