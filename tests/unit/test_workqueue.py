import threading

from vip_agent.workqueue import WorkQueue
from vip_operator.reconciler import Phase, ReconcileResult


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_add_dedupes_waiting_keys():
    queue = WorkQueue(lambda key: None, clock=FakeClock())

    queue.add("demo/web")
    queue.add("demo/web")
    queue.add("demo/dns")

    assert len(queue) == 2
    assert queue.get(timeout=0) == "demo/web"


def test_key_added_while_processing_is_parked_until_done():
    queue = WorkQueue(lambda key: None, clock=FakeClock())
    queue.add("demo/web")

    key = queue.get(timeout=0)
    queue.add(key)
    assert len(queue) == 0

    queue.done(key)
    assert len(queue) == 1


def test_requeue_after_delay():
    clock = FakeClock()
    queue = WorkQueue(
        lambda key: ReconcileResult(Phase.FAILED, requeue_after=10.0), clock=clock
    )
    queue.add("demo/web")

    queue.process_one(queue.get(timeout=0))

    assert queue.get(timeout=0) is None
    clock.now += 11.0
    assert queue.get(timeout=0) == "demo/web"


def test_earlier_delay_wins():
    clock = FakeClock()
    queue = WorkQueue(lambda key: None, clock=clock)

    queue.add_after("demo/web", 30.0)
    queue.add_after("demo/web", 5.0)
    clock.now += 6.0

    assert queue.get(timeout=0) == "demo/web"
    assert queue.get(timeout=0) is None


def test_handler_errors_are_retried_with_backoff():
    clock = FakeClock()
    outcomes = [RuntimeError("boom"), RuntimeError("boom"), None]

    def handler(key):
        outcome = outcomes.pop(0)
        if outcome is not None:
            raise outcome
        return ReconcileResult(Phase.CONVERGED)

    queue = WorkQueue(handler, clock=clock, error_backoff=1.0, max_error_backoff=60.0)
    queue.add("demo/web")

    queue.process_one(queue.get(timeout=0))
    assert queue.backoff_for("demo/web") == 1.0
    assert queue.get(timeout=0) is None
    clock.now += 1.5

    queue.process_one(queue.get(timeout=0))
    assert queue.backoff_for("demo/web") == 2.0
    clock.now += 1.5
    assert queue.get(timeout=0) is None
    clock.now += 1.0

    queue.process_one(queue.get(timeout=0))
    assert queue.backoff_for("demo/web") == 0.0
    clock.now += 100.0
    assert queue.get(timeout=0) is None


def test_error_backoff_is_bounded():
    def handler(key):
        raise RuntimeError("boom")

    clock = FakeClock()
    queue = WorkQueue(handler, clock=clock, error_backoff=1.0, max_error_backoff=8.0)
    queue.add("demo/web")

    for _ in range(6):
        queue.process_one(queue.get(timeout=0))
        clock.now += 10.0

    assert queue.backoff_for("demo/web") == 8.0


def test_workers_process_keys_until_stopped():
    seen = []
    processed = threading.Event()

    def handler(key):
        seen.append(key)
        processed.set()
        return ReconcileResult(Phase.CONVERGED)

    queue = WorkQueue(handler, workers=2)
    queue.start()
    queue.add("demo/web")

    assert processed.wait(5.0)
    queue.stop()
    queue.join(timeout=5.0)

    assert seen == ["demo/web"]
