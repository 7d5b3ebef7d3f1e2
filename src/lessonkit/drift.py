"""In-memory drift ledger for embedded excerpts.

An embed drifts when the lines it quotes change between two compiles. The
ledger remembers the last content hash seen for each embed identity and, once
a change is noticed, the baseline the author has to return to for the warning
to clear.
"""

from __future__ import annotations

import threading

import structlog

from lessonkit.models.document import EmbedDriftRecord

log = structlog.get_logger()


class DriftLedger:
    """Thread-safe ``DriftStoreProtocol`` implementation.

    Compiles run their transforms in worker threads, so every
    read-modify-write happens under one lock.
    """

    def __init__(self) -> None:
        self._records: dict[str, EmbedDriftRecord] = {}
        self._lock = threading.Lock()

    def observe(
        self, embed_identity: str, file: str, content_hash: str, *, line: int | None = None
    ) -> EmbedDriftRecord:
        """Record ``content_hash`` for ``embed_identity`` and return the updated record.

        The returned record carries a ``pending_warning_baseline`` exactly when
        the excerpt currently differs from what it was when drift was first seen.
        """
        with self._lock:
            record = self._records.get(embed_identity)
            if record is None:
                record = EmbedDriftRecord(
                    embed_identity=embed_identity,
                    file=file,
                    last_content_hash=content_hash,
                    line=line,
                )
                self._records[embed_identity] = record
                return record

            baseline = record.pending_warning_baseline
            if baseline is not None and content_hash == baseline:
                baseline = None
                log.info("embed_drift_reverted", file=file, line=line)
            elif baseline is None and content_hash != record.last_content_hash:
                baseline = record.last_content_hash
                log.info("embed_drift_detected", file=file, line=line)

            record = record.model_copy(
                update={
                    "last_content_hash": content_hash,
                    "pending_warning_baseline": baseline,
                    "file": file,
                    "line": line if line is not None else record.line,
                }
            )
            self._records[embed_identity] = record
            return record

    def get(self, embed_identity: str) -> EmbedDriftRecord | None:
        with self._lock:
            return self._records.get(embed_identity)

    def acknowledge(self, embed_identity: str) -> bool:
        """Clear a pending warning. Returns False when there was none."""
        with self._lock:
            record = self._records.get(embed_identity)
            if record is None or record.pending_warning_baseline is None:
                return False
            self._records[embed_identity] = record.model_copy(
                update={"pending_warning_baseline": None}
            )
        log.info("embed_drift_acknowledged", file=record.file)
        return True

    def records(self) -> list[EmbedDriftRecord]:
        with self._lock:
            return list(self._records.values())
