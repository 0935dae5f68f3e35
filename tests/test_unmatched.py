from samples import PROMO_BODY
from mpesa_ingest.services.unmatched import UnmatchedMessageLog

REVERSAL_1 = "QKL1AAA11 confirmed. Reversal of transaction QKJ9ZZZ99 has been successfully reversed. Ksh500.00 is credited."
REVERSAL_2 = "QKL2BBB22 confirmed. Reversal of transaction QKJ8YYY88 has been successfully reversed. Ksh1,250.00 is credited."


def test_recent_is_newest_first():
    log = UnmatchedMessageLog()
    log.record("first", "MPESA")
    log.record("second", "MPESA")

    assert [entry.body for entry in log.recent()] == ["second", "first"]
    assert [entry.body for entry in log.recent(1)] == ["second"]


def test_log_is_bounded():
    log = UnmatchedMessageLog(max_entries=2)
    for body in ("a", "b", "c"):
        log.record(body)

    assert [entry.body for entry in log.recent()] == ["c", "b"]


def test_clusters_group_similar_messages():
    log = UnmatchedMessageLog(cluster_threshold=80)
    log.record(REVERSAL_1)
    log.record(PROMO_BODY)
    log.record(REVERSAL_2)

    clusters = log.clusters()

    assert len(clusters) == 2
    assert clusters[0].count == 2
    assert clusters[0].exemplar == REVERSAL_1
    assert clusters[0].bodies == [REVERSAL_1, REVERSAL_2]
    assert clusters[1].bodies == [PROMO_BODY]


def test_clusters_threshold_override():
    log = UnmatchedMessageLog()
    log.record(REVERSAL_1)
    log.record(PROMO_BODY)

    assert len(log.clusters(threshold=0)) == 1


def test_clear():
    log = UnmatchedMessageLog()
    log.record("x")
    log.clear()

    assert log.recent() == []
    assert log.clusters() == []
