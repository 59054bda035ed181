from __future__ import annotations

import threading

from engine.queue_ledger import (
    KIND_UPLOAD,
    ActiveItem,
    CompletedItem,
    FailedItem,
    InMemoryLedgerStore,
    QueuedItem,
    QueueLedger,
)


class _Tick:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


def test_add_and_claim_transitions_to_active() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())

    queued = ledger.add("a1", "https://example.com/a.mp4", method="ytdlp")
    active = ledger.claim("a1")

    assert isinstance(queued, QueuedItem)
    assert queued.progress == 0
    assert isinstance(active, ActiveItem)
    assert active.method == "ytdlp"
    assert ledger.claim("a1") is None
    assert ledger.claim("missing") is None


def test_claim_is_exclusive_across_threads() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())
    ledger.add("a1", "https://example.com/a.mp4")
    results = []
    barrier = threading.Barrier(8)

    def _claim():
        barrier.wait()
        results.append(ledger.claim("a1"))

    threads = [threading.Thread(target=_claim) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for item in results if item is not None) == 1


def test_progress_is_clamped_and_only_for_active_items() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())
    ledger.add("a1", "https://example.com/a.mp4")

    assert ledger.update_progress("a1", 50) is None
    ledger.claim("a1")

    assert ledger.update_progress("a1", 42.123).progress == 42.1
    assert ledger.update_progress("a1", 150).progress == 100
    assert ledger.update_progress("a1", -3).progress == 0


def test_terminal_variants_carry_their_fields() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())
    ledger.add("a1", "https://example.com/a.mp4")
    ledger.add("a2", "https://example.com/b.mp4")
    ledger.claim("a1")
    ledger.update_progress("a1", 30)

    failed = ledger.mark_failed("a1", "boom")
    completed = ledger.mark_completed("a2")

    assert isinstance(failed, FailedItem)
    assert failed.error == "boom"
    assert failed.progress == 30
    assert isinstance(completed, CompletedItem)
    assert completed.progress == 100
    assert failed.to_dict()["error"] == "boom"


def test_remove_preserves_order_of_remaining_items() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())
    for item_id in ("a", "b", "c"):
        ledger.add(item_id, f"https://example.com/{item_id}.mp4")
    ledger.claim("c")

    assert ledger.remove("b") is True
    assert ledger.remove("b") is False
    assert [item.id for item in ledger.list_items()] == ["a", "c"]


def test_annotate_merges_extra_and_ignores_missing() -> None:
    ledger = QueueLedger(InMemoryLedgerStore())
    ledger.add("a", "https://example.com/a.mp4", extra={"note": "x"})

    item = ledger.annotate("a", title="Clip")

    assert item.extra == {"note": "x", "title": "Clip"}
    assert ledger.annotate("missing", title="x") is None
    assert item.to_dict()["title"] == "Clip"


def test_kinds_are_isolated_in_a_shared_store() -> None:
    store = InMemoryLedgerStore()
    downloads = QueueLedger(store)
    uploads = QueueLedger(store, kind=KIND_UPLOAD)
    downloads.add("d1", "https://example.com/a.mp4")
    uploads.add("u1", "bundle.zip")

    assert [item.id for item in downloads.list_items()] == ["d1"]
    assert uploads.list_items()[0].to_dict()["filename"] == "bundle.zip"
    assert not uploads.contains("d1")
    assert downloads.remove("d1")
    assert uploads.contains("u1")


def test_entries_expire_after_ttl() -> None:
    tick = _Tick()
    ledger = QueueLedger(InMemoryLedgerStore(default_ttl=60, clock=tick))
    ledger.add("a", "https://example.com/a.mp4")

    tick.value = 59
    assert ledger.contains("a")
    tick.value = 61
    assert ledger.get("a") is None
    assert ledger.list_items() == []
