from __future__ import annotations

import asyncio

import pytest

from chaoswatch.adapters.ledger_reader import LedgerReadError
from chaoswatch.domain.activity_events import ActivityEventSpec
from chaoswatch.domain.contracts import ContractAddresses
from chaoswatch.domain.models import RawEventRecord, ScanPhase, event_record_id
from chaoswatch.services.activity_service import (
    ActivityFeedService,
    record_from_dict,
    record_to_dict,
)
from chaoswatch.services.dedup_store import DeduplicationStore
from chaoswatch.services.poll_scheduler import CancellationToken

ADDRESSES = ContractAddresses(
    agent_registry="0x" + "11" * 20,
    mining_engine="0x" + "22" * 20,
)


def make_record(
    kind: str,
    block: int,
    log_index: int = 0,
    *,
    subject_id: int = 1,
    detail: str = "",
) -> RawEventRecord:
    tx_hash = f"0x{kind}{block}"
    return RawEventRecord(
        id=event_record_id(tx_hash, log_index),
        kind=kind,
        subject_id=subject_id,
        block_number=block,
        tx_hash=tx_hash,
        log_index=log_index,
        payload={"agentId": subject_id},
        detail_text=detail,
    )


class FakeLedger:
    def __init__(self, head: int = 0, records: list[RawEventRecord] | None = None) -> None:
        self.head = head
        self.records = records or []
        self.failing_kinds: set[str] = set()
        self.head_error: str | None = None
        self.scans: list[tuple[str, int, int]] = []

    async def block_number(self) -> int:
        if self.head_error is not None:
            raise LedgerReadError(self.head_error)
        return self.head

    async def scan_logs(
        self,
        spec: ActivityEventSpec,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEventRecord]:
        kind = spec.kind.value
        self.scans.append((kind, from_block, to_block))
        if kind in self.failing_kinds:
            raise LedgerReadError(f"eth_getLogs {kind} failed")
        return [
            record
            for record in self.records
            if record.kind == kind and from_block <= record.block_number <= to_block
        ]


def _service(ledger: FakeLedger, *, max_items: int = 5, dedup_size: int = 20):
    dedup = DeduplicationStore(dedup_size)
    service = ActivityFeedService(
        source=ledger,
        addresses=ADDRESSES,
        dedup=dedup,
        lookback_blocks=100,
        max_items=max_items,
    )
    return service, dedup


def test_only_deployed_contracts_get_scanners() -> None:
    service, _ = _service(FakeLedger(head=10))

    kinds = sorted(scanner.spec.kind.value for scanner in service.scanners)

    assert kinds == ["heartbeat", "register", "reward"]
    assert len(service.cursors()) == 3


def test_poll_merges_newest_first() -> None:
    ledger = FakeLedger(
        head=200,
        records=[
            make_record("reward", 150, 1),
            make_record("heartbeat", 180, 0),
            make_record("reward", 150, 3),
            make_record("register", 120, 0),
        ],
    )
    service, _ = _service(ledger)

    admitted = asyncio.run(service.poll())

    assert len(admitted) == 4
    assert [(r.block_number, r.log_index) for r in service.history] == [
        (180, 0),
        (150, 3),
        (150, 1),
        (120, 0),
    ]
    assert service.head == 200
    assert service.last_error is None


def test_history_cap_evicts_oldest_and_forgets_their_ids() -> None:
    records = [make_record("reward", block) for block in range(110, 118)]
    service, dedup = _service(FakeLedger(head=200, records=records), max_items=5)

    asyncio.run(service.poll())

    kept = [record.block_number for record in service.history]
    assert kept == [117, 116, 115, 114, 113]
    assert len(dedup) == 5
    assert make_record("reward", 110).id not in dedup


def test_repeat_polls_do_not_duplicate() -> None:
    ledger = FakeLedger(head=200, records=[make_record("reward", 150)])
    service, _ = _service(ledger)

    asyncio.run(service.poll())
    ledger.head = 210
    second = asyncio.run(service.poll())

    assert second == []
    assert len(service.history) == 1


def test_head_failure_keeps_history() -> None:
    ledger = FakeLedger(head=200, records=[make_record("reward", 150)])
    service, _ = _service(ledger)
    asyncio.run(service.poll())
    ledger.head_error = "eth_blockNumber failed: timeout"

    assert asyncio.run(service.poll()) == []
    assert service.last_error == "eth_blockNumber failed: timeout"
    assert len(service.history) == 1


def test_one_failing_kind_does_not_block_the_others() -> None:
    ledger = FakeLedger(
        head=200, records=[make_record("reward", 150), make_record("heartbeat", 160)]
    )
    ledger.failing_kinds.add("reward")
    service, _ = _service(ledger)

    admitted = asyncio.run(service.poll())

    assert [record.kind for record in admitted] == ["heartbeat"]
    assert service.last_error == "1 event scans failed"

    ledger.failing_kinds.clear()
    ledger.head = 205
    retried = asyncio.run(service.poll())

    assert [record.kind for record in retried] == ["reward"]
    assert ("reward", 100, 205) in ledger.scans
    assert service.last_error is None


def test_restore_seeds_history_and_dedup() -> None:
    ledger = FakeLedger(head=200, records=[make_record("reward", 150)])
    service, dedup = _service(ledger)
    persisted = [make_record("reward", 150), make_record("heartbeat", 140)]

    restored = service.restore(
        persisted,
        cursors=[
            {"source_id": "reward@0x22", "last_scanned_block": 190},
            {"source_id": 5, "last_scanned_block": "bad"},
        ],
    )

    assert restored == 2
    assert service.persisted_cursors == {"reward@0x22": 190}
    assert make_record("heartbeat", 140).id in dedup

    admitted = asyncio.run(service.poll())

    assert admitted == []
    assert len(service.history) == 2


def test_record_dict_round_trip_keeps_payload() -> None:
    record = make_record("reward", 42, 2, subject_id=9, detail="Received 1 CHAOS")

    data = record_to_dict(record)

    assert data["payload"] == {"agentId": 9}
    assert record_from_dict(data) == record


def test_dedup_must_cover_history() -> None:
    with pytest.raises(ValueError):
        _service(FakeLedger(), max_items=30, dedup_size=20)


class StallingLedger(FakeLedger):
    """Answers reward scans at once; the other kinds wait for ``release``."""

    def __init__(self, head: int, records: list[RawEventRecord]) -> None:
        super().__init__(head=head, records=records)
        self.release = asyncio.Event()

    async def scan_logs(
        self,
        spec: ActivityEventSpec,
        address: str,
        from_block: int,
        to_block: int,
    ) -> list[RawEventRecord]:
        if spec.kind.value != "reward":
            self.scans.append((spec.kind.value, from_block, to_block))
            await self.release.wait()
        return await super().scan_logs(spec, address, from_block, to_block)


def test_cancelled_poll_commits_nothing_and_restart_recovers_the_range() -> None:
    reward = make_record("reward", 150)
    ledger = StallingLedger(head=200, records=[reward])
    service, dedup = _service(ledger)
    token = CancellationToken()

    async def _interrupted() -> None:
        task = asyncio.create_task(service.poll(token))
        while ("reward", 100, 200) not in ledger.scans:
            await asyncio.sleep(0)
        token.cancel()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_interrupted())

    assert reward.id not in dedup
    assert service.history == []
    assert all(cursor.phase is not ScanPhase.POLLING for cursor in service.cursors())

    restarted, _ = _service(FakeLedger(head=205, records=[reward]))
    restarted.restore(service.history)
    admitted = asyncio.run(restarted.poll())

    assert [record.id for record in admitted] == [reward.id]
    assert [record.id for record in restarted.history] == [reward.id]
