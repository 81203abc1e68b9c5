from unittest.mock import MagicMock

import pytest

from cost_exporter.cluster.MembershipWatcher import MembershipWatcher, node_key, pod_key
from cost_exporter.engine.cluster_state import EventType


def _watcher(lister=None, watcher=None, apply=None, key_of=node_key):
    return MembershipWatcher("node",
                             lister=lister or MagicMock(return_value=([], "1")),
                             watcher=watcher or MagicMock(return_value=[]),
                             apply=apply or MagicMock(),
                             key_of=key_of,
                             backoff=0.01)


def _types(w):
    out = []
    while not w.events.empty():
        out.append(w.events.get_nowait().type)
    return out


def test_keys(make_node, make_pod):
    assert node_key(make_node("n1")) == "n1"
    assert pod_key(make_pod("web", namespace="shop")) == ("shop", "web")


def test_relist_delivers_listing_then_synced(make_node):
    w = _watcher(lister=MagicMock(return_value=([make_node("n1"), make_node("n2")], "42")))
    assert w.relist() == "42"
    assert _types(w) == [EventType.ADDED, EventType.ADDED, EventType.SYNCED]


def test_relist_reports_vanished_objects_as_removed(make_node):
    lister = MagicMock(side_effect=[
        ([make_node("n1"), make_node("n2")], "1"),
        ([make_node("n2")], "7"),
    ])
    w = _watcher(lister=lister)
    w.relist()
    _types(w)

    w.relist()
    events = []
    while not w.events.empty():
        events.append(w.events.get_nowait())
    assert [(e.type, e.obj.metadata.name if e.obj else None) for e in events] == [
        (EventType.UPDATED, "n2"),
        (EventType.REMOVED, "n1"),
        (EventType.SYNCED, None),
    ]


def test_watch_once_forwards_events(make_node):
    stream = [
        {"type": "ADDED", "object": make_node("n3", resource_version="11")},
        {"type": "BOOKMARK", "object": make_node("", resource_version="12")},
        {"type": "MODIFIED", "object": make_node("n3", resource_version="13")},
        {"type": "DELETED", "object": make_node("n3", resource_version="14")},
    ]
    watcher = MagicMock(return_value=iter(stream))
    w = _watcher(watcher=watcher)

    assert w.watch_once("10") == "14"
    watcher.assert_called_once_with("10")
    assert _types(w) == [EventType.ADDED, EventType.UPDATED, EventType.REMOVED]
    assert w._known == {}


def test_watch_error_event_raises(make_node):
    stream = [{"type": "ERROR", "object": {"code": 410, "reason": "Expired"}}]
    w = _watcher(watcher=MagicMock(return_value=iter(stream)))
    with pytest.raises(RuntimeError):
        w.watch_once("10")


def test_writer_applies_in_order_and_survives_failures(make_node):
    seen = []

    def apply(event):
        seen.append(event.type)
        if event.type is EventType.ADDED:
            raise RuntimeError("boom")

    w = _watcher(lister=MagicMock(return_value=([make_node("n1")], "1")), apply=apply)
    w.relist()
    w.events.put(None)
    w._write_loop()
    assert w.events.empty()
    assert seen == [EventType.ADDED, EventType.SYNCED]


def test_started_watcher_syncs_cache(cache, make_node):
    listing = ([make_node("n1"), make_node("n2")], "5")
    w = MembershipWatcher("node",
                          lister=MagicMock(return_value=listing),
                          watcher=MagicMock(return_value=[]),
                          apply=cache.apply_node_event,
                          key_of=node_key,
                          backoff=0.05)
    w.start()
    try:
        assert cache.nodes_synced.wait(5)
        assert cache.get_node("n1") is not None
        assert cache.get_node("n2") is not None
    finally:
        w.stop()
