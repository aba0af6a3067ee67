import logging
import threading

from training_center_cbt.services.autosave import AutosavePipeline


class Recorder:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, answers, current_index):
        if self.fail:
            raise RuntimeError("store offline")
        self.calls.append((answers, current_index))


def test_burst_coalesces_into_one_write_with_latest_state(timers):
    save = Recorder()
    pipeline = AutosavePipeline(save, delay=0.5, timer_factory=timers)

    pipeline.queue({"q1": "A"}, 0)
    pipeline.queue({"q1": "B"}, 0)
    pipeline.queue({"q1": "B", "q2": ["X"]}, 1)

    assert save.calls == []
    assert len(timers.live) == 1
    assert timers.live[0].interval == 0.5
    assert timers.live[0].daemon is True

    timers.fire_pending()

    assert save.calls == [({"q1": "B", "q2": ["X"]}, 1)]
    assert pipeline.write_count == 1
    assert pipeline.has_pending is False


def test_cancelled_timers_do_not_write(timers):
    save = Recorder()
    pipeline = AutosavePipeline(save, timer_factory=timers)

    pipeline.queue({"q1": "A"}, 0)
    pipeline.queue({"q1": "B"}, 0)

    first, second = timers.timers
    assert first.cancelled is True
    first.fire()
    assert save.calls == []

    second.fire()
    assert save.calls == [({"q1": "B"}, 0)]


def test_queued_payload_is_a_copy(timers):
    save = Recorder()
    pipeline = AutosavePipeline(save, timer_factory=timers)

    answers = {"q2": ["X"]}
    pipeline.queue(answers, 0)
    answers["q2"].append("Y")
    answers["q3"] = "late"

    timers.fire_pending()
    assert save.calls == [({"q2": ["X"]}, 0)]


def test_save_now_writes_immediately_and_drops_pending(timers):
    save = Recorder()
    pipeline = AutosavePipeline(save, timer_factory=timers)

    pipeline.queue({"q1": "A"}, 0)
    pipeline.save_now({"q1": "C"}, 2)

    assert save.calls == [({"q1": "C"}, 2)]
    assert timers.timers[0].cancelled is True

    timers.fire_pending()
    assert len(save.calls) == 1


def test_cancel_drops_pending_write(timers):
    save = Recorder()
    pipeline = AutosavePipeline(save, timer_factory=timers)

    pipeline.queue({"q1": "A"}, 0)
    pipeline.cancel()

    timers.fire_pending()
    assert save.calls == []
    assert pipeline.has_pending is False


def test_failed_write_is_logged_and_swallowed(timers, caplog):
    save = Recorder(fail=True)
    pipeline = AutosavePipeline(save, timer_factory=timers)

    with caplog.at_level(logging.WARNING):
        pipeline.queue({"q1": "A"}, 0)
        timers.fire_pending()
        pipeline.save_now({"q1": "B"}, 0)

    assert pipeline.write_count == 0
    assert "store offline" in caplog.text

    # 다음 변경은 다시 저장을 시도한다
    save.fail = False
    pipeline.queue({"q1": "C"}, 0)
    timers.fire_pending()
    assert save.calls == [({"q1": "C"}, 0)]


def test_disabled_pipeline_is_noop(timers):
    pipeline = AutosavePipeline(None, timer_factory=timers)

    assert pipeline.enabled is False
    pipeline.queue({"q1": "A"}, 0)
    pipeline.save_now({"q1": "A"}, 0)

    assert timers.timers == []
    assert pipeline.write_count == 0


class BlockingSave:
    """첫 번째 쓰기를 release가 set될 때까지 붙잡는다."""

    def __init__(self):
        self.calls = []
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, answers, current_index):
        self.calls.append((answers, current_index))
        if len(self.calls) == 1:
            self.entered.set()
            self.release.wait(5)


def test_cancel_waits_for_write_in_flight(timers):
    save = BlockingSave()
    pipeline = AutosavePipeline(save, timer_factory=timers)
    pipeline.queue({"q1": "A"}, 0)

    writer = threading.Thread(target=timers.fire_pending)
    writer.start()
    assert save.entered.wait(5)

    cancelled = threading.Event()
    canceller = threading.Thread(target=lambda: (pipeline.cancel(), cancelled.set()))
    canceller.start()
    assert not cancelled.wait(0.2)

    save.release.set()
    writer.join(5)
    canceller.join(5)

    assert cancelled.is_set()
    assert save.calls == [({"q1": "A"}, 0)]


def test_save_now_lands_after_write_in_flight(timers):
    save = BlockingSave()
    pipeline = AutosavePipeline(save, timer_factory=timers)
    pipeline.queue({"q1": "A"}, 0)

    writer = threading.Thread(target=timers.fire_pending)
    writer.start()
    assert save.entered.wait(5)

    flusher = threading.Thread(target=pipeline.save_now, args=({"q1": "C"}, 2))
    flusher.start()
    save.release.set()
    writer.join(5)
    flusher.join(5)

    assert save.calls == [({"q1": "A"}, 0), ({"q1": "C"}, 2)]
    assert pipeline.write_count == 2
