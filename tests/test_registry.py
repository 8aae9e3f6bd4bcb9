import random
import threading

import pytest

from imgrake.models import ImageFormat
from imgrake.registry import ImageRegistry, VisitedSet


def _offer(reg, identity, size):
    return reg.offer(identity, b"x" * size, format=ImageFormat.JPG, domain="example.com", content_type="image/jpeg")


def test_visited_set_admits_once():
    v = VisitedSet()
    assert v.add("http://example.com/")
    assert not v.add("http://example.com/")
    assert "http://example.com/" in v
    assert len(v) == 1


def test_visited_set_concurrent_adds_admit_exactly_one():
    v = VisitedSet()
    wins = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        wins.append(v.add("http://example.com/page"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert wins.count(True) == 1
    assert v.snapshot() == frozenset({"http://example.com/page"})


def test_offer_keeps_strictly_larger():
    reg = ImageRegistry()
    assert _offer(reg, "http://example.com/a.jpg", 100)
    assert not _offer(reg, "http://example.com/a.jpg", 100)
    assert not _offer(reg, "http://example.com/a.jpg", 50)
    assert _offer(reg, "http://example.com/a.jpg", 150)
    assert reg.best_size("http://example.com/a.jpg") == 150
    assert reg.best_size("http://example.com/missing.jpg") is None


def test_replacement_keeps_discovery_order():
    reg = ImageRegistry()
    _offer(reg, "http://example.com/b.jpg", 10)
    _offer(reg, "http://example.com/a.jpg", 10)
    _offer(reg, "http://example.com/b.jpg", 20)
    by_id = {r.identity: r for r in reg.finalize()}
    assert by_id["http://example.com/b.jpg"].discovered_at == 0
    assert by_id["http://example.com/a.jpg"].discovered_at == 1


def test_concurrent_offers_end_with_maximum():
    reg = ImageRegistry()
    sizes = list(range(1, 201))
    random.shuffle(sizes)
    barrier = threading.Barrier(len(sizes))

    def worker(size):
        barrier.wait()
        _offer(reg, "http://example.com/a.jpg", size)

    threads = [threading.Thread(target=worker, args=(s,)) for s in sizes]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert reg.best_size("http://example.com/a.jpg") == 200


def test_finalize_sorts_and_freezes():
    reg = ImageRegistry()
    _offer(reg, "http://example.com/z.jpg", 1)
    _offer(reg, "http://example.com/a.jpg", 1)
    records = reg.finalize()
    assert [r.identity for r in records] == ["http://example.com/a.jpg", "http://example.com/z.jpg"]
    with pytest.raises(RuntimeError):
        _offer(reg, "http://example.com/new.jpg", 1)
