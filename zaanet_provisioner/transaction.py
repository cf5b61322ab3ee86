"""All-or-nothing application of configuration mutation batches.

A batch is one logical phase (gateway parameters, admin whitelist, firewall
rules, wireless). Before the first mutation every affected artifact is
backed up; mutations are applied strictly in order; a single commit closes
the phase. A failing commit, or a failing critical mutation, restores the
pre-phase snapshot.

Phase states:

    IDLE -> BACKED_UP -> MUTATING -> COMMITTED
                                  -> ROLLING_BACK -> ROLLED_BACK
                                                  -> FAILED (nothing to restore)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .backup import BackupRecord
from .errors import ConfigStoreError
from .store import ConfigStore

logger = logging.getLogger(__name__)


class Target(str, Enum):
    """Which configuration namespace a mutation addresses."""
    GATEWAY = "gateway"
    NETWORK = "network"


class MutationOp(str, Enum):
    SET = "set"
    DELETE = "delete"
    ADD_TO_LIST = "add_list"


class PhaseState(str, Enum):
    IDLE = "idle"
    BACKED_UP = "backed_up"
    MUTATING = "mutating"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass(frozen=True)
class Mutation:
    """One store operation.

    ``critical`` mutations must succeed: a failure aborts the phase and
    restores the snapshot. Everything else is best-effort.
    """
    target: Target
    op: MutationOp
    section: str
    key: str
    value: Optional[str] = None
    critical: bool = False

    def describe(self) -> str:
        if self.op == MutationOp.DELETE:
            return f"delete {self.section}.{self.key}"
        return f"{self.op.value} {self.section}.{self.key}={self.value}"


@dataclass
class MutationBatch:
    """Ordered mutations forming one phase."""
    phase: str
    mutations: List[Mutation] = field(default_factory=list)

    def set(self, target: Target, section: str, key: str, value: str, critical: bool = False) -> "MutationBatch":
        self.mutations.append(Mutation(target, MutationOp.SET, section, key, value, critical))
        return self

    def delete(self, target: Target, section: str, key: str, critical: bool = False) -> "MutationBatch":
        self.mutations.append(Mutation(target, MutationOp.DELETE, section, key, None, critical))
        return self

    def add_to_list(self, target: Target, section: str, key: str, value: str, critical: bool = False) -> "MutationBatch":
        self.mutations.append(Mutation(target, MutationOp.ADD_TO_LIST, section, key, value, critical))
        return self

    @property
    def targets(self) -> List[Target]:
        """Targets in first-use order."""
        seen: List[Target] = []
        for mutation in self.mutations:
            if mutation.target not in seen:
                seen.append(mutation.target)
        return seen

    def __len__(self) -> int:
        return len(self.mutations)


@dataclass
class CommitResult:
    """Outcome of one phase."""
    phase: str
    success: bool = False
    state: PhaseState = PhaseState.IDLE
    applied: List[Mutation] = field(default_factory=list)
    failed: List[Tuple[Mutation, str]] = field(default_factory=list)
    backups: List[BackupRecord] = field(default_factory=list)
    rolled_back: bool = False
    error: Optional[str] = None

    @property
    def warnings(self) -> List[str]:
        return [f"{self.phase}: failed to {m.describe()} ({err})" for m, err in self.failed]


class ConfigTransaction:
    """Applies batches against a set of stores, one phase at a time."""

    def __init__(
        self,
        stores: Dict[Target, ConfigStore],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.stores = stores
        self.clock = clock
        self.state = PhaseState.IDLE

    async def apply(self, batch: MutationBatch) -> CommitResult:
        """Apply a batch as a unit."""
        result = CommitResult(phase=batch.phase)
        self.state = PhaseState.IDLE

        missing = [t for t in batch.targets if t not in self.stores]
        if missing:
            raise ValueError(f"No store configured for: {', '.join(t.value for t in missing)}")

        stores = [self.stores[t] for t in batch.targets]

        # Snapshot before the first mutation
        now = self.clock()
        for store in stores:
            backup = BackupRecord.create(store.path, now)
            if backup:
                result.backups.append(backup)
        self._transition(result, PhaseState.BACKED_UP)

        self._transition(result, PhaseState.MUTATING)
        for mutation in batch.mutations:
            try:
                await self._apply_one(self.stores[mutation.target], mutation)
                result.applied.append(mutation)
            except ConfigStoreError as e:
                result.failed.append((mutation, str(e)))
                if mutation.critical:
                    logger.error(f"[{batch.phase}] Critical mutation failed: {mutation.describe()}: {e}")
                    await self._roll_back(
                        result, stores, f"critical mutation failed: {mutation.describe()}", staged_only=True,
                    )
                    return result
                logger.warning(f"[{batch.phase}] Failed to {mutation.describe()}: {e}")

        for store in stores:
            try:
                await store.commit()
            except ConfigStoreError as e:
                logger.error(f"[{batch.phase}] Failed to commit {store.package}: {e}")
                await self._roll_back(result, stores, f"commit of {store.package} failed: {e}", staged_only=False)
                return result

        self._transition(result, PhaseState.COMMITTED)
        result.success = True
        logger.info(f"[{batch.phase}] Committed {len(result.applied)}/{len(batch)} mutations")
        return result

    async def _apply_one(self, store: ConfigStore, mutation: Mutation) -> None:
        if mutation.op == MutationOp.SET:
            await store.set(mutation.section, mutation.key, mutation.value or "")
        elif mutation.op == MutationOp.DELETE:
            await store.delete(mutation.section, mutation.key)
        elif mutation.op == MutationOp.ADD_TO_LIST:
            await store.add_list(mutation.section, mutation.key, mutation.value or "")
        else:
            raise ValueError(f"Unsupported mutation: {mutation.op}")

    async def _roll_back(
        self, result: CommitResult, stores: List[ConfigStore], reason: str, staged_only: bool,
    ) -> None:
        self._transition(result, PhaseState.ROLLING_BACK)
        result.error = reason

        for store in stores:
            try:
                await store.revert()
            except ConfigStoreError as e:
                logger.warning(f"Failed to revert staged changes for {store.package}: {e}")

        restored = 0
        for backup in result.backups:
            try:
                backup.restore()
                restored += 1
            except OSError as e:
                logger.error(f"Failed to restore {backup.artifact} from {backup.path}: {e}")

        if result.backups and restored == len(result.backups):
            result.rolled_back = True
            self._transition(result, PhaseState.ROLLED_BACK)
        elif staged_only and not result.backups:
            # Nothing was committed; discarding the staged changes is the rollback
            result.rolled_back = True
            self._transition(result, PhaseState.ROLLED_BACK)
        else:
            logger.warning(f"[{result.phase}] No backup to restore, configuration left as committed")
            self._transition(result, PhaseState.FAILED)

    def _transition(self, result: CommitResult, state: PhaseState) -> None:
        logger.debug(f"[{result.phase}] {self.state.value} -> {state.value}")
        self.state = state
        result.state = state
