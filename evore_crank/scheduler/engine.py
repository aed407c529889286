"""
CrankScheduler: one explicit context object holding the deployer list, the
completion ledger, the round monitor, the lookup table manager and the
submitter. Nothing lives at module level, so independent schedulers can run
side by side (tests build one per case).

Per cycle:
    pending status poll -> round poll -> deploy window gate -> one batched
    account snapshot -> admission -> batches (ceiling fixed for the cycle)
    -> submit each batch (failures isolated) -> mark completion -> summary log
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from evore_crank.config.settings import CrankSettings
from evore_crank.core.exceptions import DecodeError, LedgerUnavailable, SubmitOutcomeUnknown, SubmitRejected
from evore_crank.crank_logging import bind_deployer, get_logger
from evore_crank.ledger.addresses import shared_static_addresses
from evore_crank.ledger.codec import DEPLOYER_AUTHORITY_OFFSET, decode_miner
from evore_crank.ledger.constants import EVORE_DEPLOYER_TAG
from evore_crank.ledger.reader import LedgerReader, MemcmpFilter
from evore_crank.scheduler.admission import AdmissionController, DeployIntent
from evore_crank.scheduler.balance import BalanceCalculator
from evore_crank.scheduler.batching import CHECKPOINT_ONLY, DEPLOY, BatchBuilder
from evore_crank.scheduler.completion import CompletionTracker, RoundCompletionTracker
from evore_crank.scheduler.lookup_table import LookupTableManager
from evore_crank.scheduler.models import Deployer, DeployerSnapshot, SkipReason
from evore_crank.scheduler.round_monitor import RoundMonitor, RoundPhase, RoundStatus
from evore_crank.scheduler.submitter import CONFIRMED, TransactionSubmitter

logger = get_logger(__name__)

# accounts read per deployer each cycle: autodeploy balance, managed miner auth, ORE miner
ACCOUNTS_PER_DEPLOYER = 3


@dataclass
class CycleSummary:
    cycle: int
    round_id: int | None = None
    phase: str | None = None
    slots_remaining: int | None = None
    skipped_cycle: str | None = None
    admitted: int = 0
    checkpoint_only: int = 0
    skipped: dict[str, int] = field(default_factory=dict)
    batches: int = 0
    submitted: int = 0
    outcome_unknown: int = 0
    failed: int = 0
    duration_sec: float = 0.0

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "round_id": self.round_id,
            "phase": self.phase,
            "slots_remaining": self.slots_remaining,
            "skipped_cycle": self.skipped_cycle,
            "admitted": self.admitted,
            "checkpoint_only": self.checkpoint_only,
            "skipped": self.skipped,
            "batches": self.batches,
            "submitted": self.submitted,
            "outcome_unknown": self.outcome_unknown,
            "failed": self.failed,
            "duration_sec": round(self.duration_sec, 3),
        }


class CrankScheduler:
    def __init__(
        self,
        settings: CrankSettings,
        reader: LedgerReader,
        payer: Keypair,
        *,
        submitter: TransactionSubmitter | None = None,
        tracker: CompletionTracker | None = None,
        sleep: Callable[[float], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._reader = reader
        self._authority = payer.pubkey()
        self._program_id = settings.program_id
        self._sleep = sleep
        self._clock = clock

        self.tracker: CompletionTracker = tracker or RoundCompletionTracker()
        self.monitor = RoundMonitor(reader, intermission_slots=settings.intermission_slots)
        self.monitor.subscribe(self.tracker.on_round_change)
        self.calculator = BalanceCalculator()
        self.admission = AdmissionController(
            self.calculator,
            self.tracker,
            amount_per_square=settings.deploy_amount_lamports,
            squares_mask=settings.squares_mask,
            required_flat_fee=settings.required_flat_fee,
        )
        self.submitter = submitter or TransactionSubmitter(
            reader,
            payer,
            dry_run=settings.dry_run,
            retry_attempts=settings.retry_attempts,
            retry_backoff_sec=settings.retry_backoff_sec,
            confirm_timeout_sec=settings.confirm_timeout_sec,
            confirm_poll_interval_sec=settings.confirm_poll_interval_sec,
            clock=clock,
        )
        self.lookup_tables = LookupTableManager(reader, self.submitter, self._authority)
        self.batcher = BatchBuilder(
            self._program_id,
            self._authority,
            auth_id=settings.auth_id,
            priority_fee=settings.priority_fee,
        )
        self.deployers: list[Deployer] = []
        self.cycle = 0

    @property
    def authority(self) -> Pubkey:
        return self._authority

    def discover_deployers(self) -> list[Deployer]:
        """
        Scan Evore for deployer accounts whose deploy_authority is this crank.
        Raises LedgerUnavailable; undecodable accounts are logged and left out.
        """
        filters = [
            MemcmpFilter(0, bytes([EVORE_DEPLOYER_TAG, 0, 0, 0, 0, 0, 0, 0])),
            MemcmpFilter(DEPLOYER_AUTHORITY_OFFSET, bytes(self._authority)),
        ]
        found: list[Deployer] = []
        for account in self._reader.get_program_accounts(self._program_id, filters):
            try:
                found.append(Deployer.from_account(self._program_id, account, self.settings.auth_id))
            except DecodeError as e:
                logger.warning("crank_deployer_decode_failed", deployer_id=str(account.address), error=str(e))
        found.sort(key=lambda d: d.key)
        self.deployers = found
        logger.info("crank_deployers_discovered", count=len(found), authority=str(self._authority))
        return found

    def lookup_candidates(self) -> list[Pubkey]:
        """Static shared accounts plus every deployer's accounts, in a stable order."""
        candidates = shared_static_addresses(self._program_id)
        for deployer in self.deployers:
            candidates.extend(deployer.addresses.lookup_addresses())
        return candidates

    def prepare(self) -> None:
        """
        Startup: discover deployers, then load (and optionally extend) the lookup table.
        A table that fails to load leaves the crank unaccelerated for the whole run.
        """
        self.discover_deployers()
        table = self.settings.lut_pubkey
        if table is None:
            logger.info("lut_not_configured", capacity_ceiling=self.lookup_tables.capacity_ceiling)
            return
        try:
            self.lookup_tables.load(table)
        except (LedgerUnavailable, DecodeError) as e:
            logger.warning("lut_load_failed", lut=str(table), error=str(e))
            return
        if self.settings.auto_extend_lut:
            missing = self.lookup_tables.missing_addresses(self.lookup_candidates())
            if missing:
                logger.info("lut_extending", lut=str(table), missing=len(missing))
                self.lookup_tables.extend(missing)

    def in_deploy_window(self, status: RoundStatus) -> bool:
        remaining = status.slots_remaining
        if status.phase is not RoundPhase.ACTIVE or remaining is None:
            return False
        return self.settings.min_slots_to_deploy <= remaining <= self.settings.deploy_slots_before_end

    def snapshot(self) -> list[DeployerSnapshot]:
        """One batched read of every deployer's balance and miner accounts. Raises LedgerUnavailable."""
        addresses: list[Pubkey] = []
        for deployer in self.deployers:
            addrs = deployer.addresses
            addresses.extend([addrs.autodeploy_balance, addrs.managed_miner_auth, addrs.ore_miner])
        accounts = self._reader.get_accounts(addresses)
        snapshots: list[DeployerSnapshot] = []
        for i, deployer in enumerate(self.deployers):
            balance, auth, miner_account = accounts[i * ACCOUNTS_PER_DEPLOYER : (i + 1) * ACCOUNTS_PER_DEPLOYER]
            if balance is None:
                snapshots.append(
                    DeployerSnapshot(deployer, error=SkipReason.DATA_UNAVAILABLE, detail="autodeploy balance account missing")
                )
                continue
            miner = None
            if miner_account is not None:
                try:
                    miner = decode_miner(miner_account.data)
                except DecodeError as e:
                    snapshots.append(DeployerSnapshot(deployer, error=SkipReason.DECODE_ERROR, detail=str(e)))
                    continue
            snapshots.append(
                DeployerSnapshot(
                    deployer=deployer,
                    cached_balance=balance.lamports,
                    auth_balance=auth.lamports if auth is not None else 0,
                    miner=miner,
                    miner_exists=miner_account is not None,
                )
            )
        return snapshots

    def _is_indexed(self, intent: DeployIntent) -> bool:
        return self.lookup_tables.is_indexed(intent.deployer.addresses.lookup_addresses())

    def _resolve_pending(self) -> None:
        for pending, outcome in self.submitter.poll_pending():
            if pending.kind != CHECKPOINT_ONLY or outcome == CONFIRMED:
                continue
            for deployer, checkpoint_round in zip(pending.deployers, pending.checkpoint_rounds):
                if checkpoint_round is not None:
                    self.tracker.forget_checkpoint(deployer, checkpoint_round)

    def run_cycle(self) -> CycleSummary:
        self.cycle += 1
        started = self._clock()
        summary = CycleSummary(cycle=self.cycle)
        try:
            self._run_cycle(summary)
        finally:
            summary.duration_sec = self._clock() - started
        level = logger.info if (summary.batches or summary.failed or summary.outcome_unknown) else logger.debug
        level("crank_cycle_done", **summary.as_log_fields())
        return summary

    def _run_cycle(self, summary: CycleSummary) -> None:
        self._resolve_pending()
        try:
            status = self.monitor.poll()
        except LedgerUnavailable as e:
            summary.skipped_cycle = "ledger_unavailable"
            logger.warning("crank_round_poll_failed", cycle=summary.cycle, error=str(e))
            return
        except DecodeError as e:
            summary.skipped_cycle = "board_decode_error"
            logger.warning("crank_round_poll_failed", cycle=summary.cycle, error=str(e))
            return
        summary.round_id = status.round_id
        summary.phase = status.phase.value
        summary.slots_remaining = status.slots_remaining
        if not self.in_deploy_window(status):
            summary.skipped_cycle = "outside_deploy_window"
            return
        if not self.deployers:
            summary.skipped_cycle = "no_deployers"
            return

        try:
            snapshots = self.snapshot()
        except LedgerUnavailable as e:
            summary.skipped_cycle = "ledger_unavailable"
            logger.warning("crank_snapshot_failed", cycle=summary.cycle, round_id=status.round_id, error=str(e))
            return

        result = self.admission.admit(status.round_id, snapshots)
        summary.admitted = len(result.to_deploy)
        summary.checkpoint_only = len(result.to_checkpoint_only)
        summary.skipped = result.skipped_by_reason()

        ceiling = self.lookup_tables.capacity_ceiling
        table = self.lookup_tables.lookup_table_account()
        batches = self.batcher.build(
            result,
            ceiling=ceiling,
            is_indexed=self._is_indexed if table is not None else None,
        )
        summary.batches = len(batches)

        for batch in batches:
            deployers = [intent.deployer.address for intent in batch.intents]
            try:
                signature = self.submitter.submit(batch.instructions, table, label=batch.kind)
            except SubmitOutcomeUnknown as e:
                # may have landed: record it like a submission and let poll_pending resolve it
                signature = e.signature
                summary.outcome_unknown += 1
                logger.warning(
                    "crank_batch_outcome_unknown",
                    round_id=status.round_id,
                    kind=batch.kind,
                    deployers=[str(d) for d in deployers],
                    signature=signature,
                    error=str(e),
                )
            except (SubmitRejected, LedgerUnavailable) as e:
                summary.failed += 1
                logger.warning(
                    "crank_batch_failed",
                    round_id=status.round_id,
                    kind=batch.kind,
                    deployers=[str(d) for d in deployers],
                    error=str(e),
                    logs=getattr(e, "logs", [])[-5:],
                )
                continue
            else:
                summary.submitted += 1
            for intent in batch.intents:
                if batch.kind == DEPLOY:
                    self.tracker.mark_submitted(intent.deployer.address, status.round_id)
                elif intent.checkpoint_round is not None:
                    self.tracker.mark_checkpoint_submitted(intent.deployer.address, intent.checkpoint_round)
                bind_deployer(intent.deployer.key).info(
                    "crank_deployer_submitted",
                    round_id=status.round_id,
                    kind=batch.kind,
                    checkpoint_round=intent.checkpoint_round,
                    signature=signature,
                )
            self.submitter.track(
                signature,
                kind=batch.kind,
                round_id=status.round_id,
                deployers=deployers,
                checkpoint_rounds=[intent.checkpoint_round for intent in batch.intents],
            )

    def run(self, stop_event: threading.Event | None = None, max_cycles: int | None = None) -> int:
        """
        Poll every settings.poll_interval_ms until stop_event is set (or max_cycles ran).
        A stop request takes effect between cycles; the running cycle finishes its submissions.
        Returns the number of cycles run.
        """
        stop = stop_event or threading.Event()
        sleep = self._sleep or (lambda seconds: stop.wait(timeout=seconds))
        interval = self.settings.poll_interval_sec
        ran = 0
        logger.info(
            "crank_started",
            deployers=len(self.deployers),
            capacity_ceiling=self.lookup_tables.capacity_ceiling,
            lut=str(self.lookup_tables.table_address) if self.lookup_tables.table_address else None,
            poll_interval_ms=self.settings.poll_interval_ms,
            dry_run=self.settings.dry_run,
        )
        while not stop.is_set():
            if max_cycles is not None and ran >= max_cycles:
                break
            started = self._clock()
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("crank_cycle_failed", cycle=self.cycle, error=str(e))
            ran += 1
            if stop.is_set() or (max_cycles is not None and ran >= max_cycles):
                break
            delay = interval - (self._clock() - started)
            if delay > 0:
                sleep(delay)
        logger.info("crank_stopped", cycles=ran)
        return ran
