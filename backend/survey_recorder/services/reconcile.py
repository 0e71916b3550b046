from dataclasses import dataclass, field
from survey_recorder.core.logger import get_logger
from survey_recorder.services.ledger import DailyLedger
from survey_recorder.services.store import RecordingStore

logger = get_logger(__name__)


@dataclass
class ReconcileReport:
    orphaned_artifacts: list[str] = field(default_factory=list)
    dangling_entries: list[str] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.orphaned_artifacts and not self.dangling_entries


async def reconcile(store: RecordingStore, ledger: DailyLedger) -> ReconcileReport:
    """Compare stored artifacts with ledger entries and report drift.

    Artifacts without an entry are left behind by a failed ledger append;
    entries without an artifact by a deleted file whose entry fell outside the
    delete lookback window. Nothing is modified.
    """
    artifacts = {r.filename for r in await store.list()}
    logged = set()
    for entries in (await ledger.entries_by_day()).values():
        logged.update(e["filename"] for e in entries if isinstance(e, dict) and "filename" in e)

    report = ReconcileReport(
        orphaned_artifacts=sorted(artifacts - logged),
        dangling_entries=sorted(logged - artifacts),
    )
    if report.orphaned_artifacts:
        logger.warning(
            f"{len(report.orphaned_artifacts)} recordings have no ledger entry",
            extra={"orphaned": report.orphaned_artifacts},
        )
    if report.dangling_entries:
        logger.warning(
            f"{len(report.dangling_entries)} ledger entries point at missing recordings",
            extra={"dangling": report.dangling_entries},
        )
    if report.consistent:
        logger.info(f"Storage consistent: {len(artifacts)} recordings")
    return report
