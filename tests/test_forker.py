import os
import sys
import time
import signal
import threading

import pytest
import setproctitle

from tines import fork
from tines.forker import AlreadyRunning, ExitOutcome, ForkFailed, Forker
pytestmark = pytest.mark.skipif(not hasattr(os, "fork"), reason="requires os.fork")


def _returns(code):
    return lambda data: code


def _kill_self(signum):
    def callback(data):
        os.kill(os.getpid(), signum)
        time.sleep(5)
        return 0
    return callback


def _sleep_forever(data):
    time.sleep(120)
    return 0


def test_run_returns_exit_code_of_each_unit(settings):
    forker = Forker(settings=settings)
    forker.register(_returns(0))
    forker.register(_returns(2))
    forker.register(_returns(3))

    assert forker.run() == {0: 0, 1: 2, 2: 3}


def test_fork_maps_outcomes_by_name(settings):
    forker = Forker(settings=settings)

    assert forker.fork({"a": _returns(0), "b": _returns(2), "c": _returns(3)}) == {"a": 0, "b": 2, "c": 3}


def test_module_level_fork_runs_a_fresh_batch():
    assert fork({"only": _returns(7)}) == {"only": 7}


def test_callback_receives_its_data(settings):
    forker = Forker(settings=settings)
    forker.register(lambda data: data["code"], data={"code": 42})

    assert forker.run() == {0: 42}


def test_registered_names_key_the_results(settings):
    forker = Forker(settings=settings)
    forker.register(_returns(1), name="first")
    forker.register(_returns(5))

    assert forker.run() == {"first": 1, 1: 5}


def test_signal_sent_to_child_is_returned_as_negative_exit_code(settings):
    forker = Forker(settings=settings)
    forker.register(_kill_self(signal.SIGTERM))

    assert forker.run() == {0: -15}


def test_child_init_runs_before_callback(settings):
    forker = Forker(on_child_init=lambda: sys.exit(4), settings=settings)
    for code in (0, 2, 3):
        forker.register(_returns(code))

    assert forker.run() == {0: 4, 1: 4, 2: 4}


def test_exit_status_hooks_receive_code_and_data(settings):
    expected = {"zero": 0, "two": 2, "three": 3}
    statuses, exits = [], []
    forker = Forker(
        on_exit_status=lambda code, data: statuses.append((data["fork_name"], code)),
        on_child_exited=lambda outcome, data: exits.append((data["fork_name"], outcome)),
        settings=settings,
    )
    for name, code in expected.items():
        forker.register(_returns(code), data={"fork_name": name})

    forker.run()

    assert sorted(statuses) == sorted(expected.items())
    assert sorted(exits) == sorted((name, ExitOutcome("exit", code, None)) for name, code in expected.items())


def test_exit_signal_hooks_receive_signal(settings):
    signals, exits = [], []
    forker = Forker(
        on_exit_signal=lambda signum, data: signals.append(signum),
        on_child_exited=lambda outcome, data: exits.append(outcome),
        settings=settings,
    )
    forker.register(_kill_self(signal.SIGTERM))

    forker.run()

    assert signals == [15]
    assert exits == [ExitOutcome("signal", None, 15)]
    assert exits[0].code == -15


def test_a_fork_cannot_reuse_the_forker_from_the_parent(settings):
    forker = Forker(settings=settings)

    def register_again(data):
        try:
            forker.register(_returns(0))
        except AlreadyRunning:
            return 234
        return 0

    forker.register(register_again)

    assert forker.run() == {0: 234}


def test_registration_after_run_is_rejected(settings):
    forker = Forker(settings=settings)
    forker.register(_returns(0))
    forker.run()

    assert forker.has_run
    with pytest.raises(AlreadyRunning):
        forker.register(_returns(1))
    with pytest.raises(AlreadyRunning):
        forker.run()


def test_runner_can_only_run_once(settings):
    forker = Forker(settings=settings)
    forker.register(_returns(0))
    runner = forker.freeze()
    runner.run()

    with pytest.raises(AlreadyRunning):
        runner.run()


def test_process_title_option_is_applied_in_child(settings, fake_title):
    forker = Forker(title=fake_title, settings=settings)

    def check_title(data):
        return 0 if fake_title.current == f"runner ({data})" else 1

    for name in ("zero", "two", "three"):
        forker.register(check_title, options={"process_title": f"runner ({name})"}, data=name)

    assert forker.run() == {0: 0, 1: 0, 2: 0}
    assert fake_title.history == []


def test_process_title_hook_receives_existing_title_and_name(settings, fake_title):
    forker = Forker(
        process_title=lambda existing, name: f"{existing} [{name}]",
        title=fake_title,
        settings=settings,
    )
    forker.register(lambda data: 0 if fake_title.current == "pytest-runner [worker]" else 1, name="worker")

    assert forker.run() == {"worker": 0}


def test_process_title_is_set_on_the_real_process(settings):
    forker = Forker(settings=settings)

    def check_title(data):
        return 0 if data in setproctitle.getproctitle() else 1

    forker.register(check_title, options={"process_title": "tines-test (alpha)"}, data="alpha")

    assert forker.run() == {0: 0}


def test_process_timeouts_can_be_set(settings):
    forker = Forker(settings=settings)
    forker.register(_sleep_forever, options={"timeout": 1})
    forker.register(_sleep_forever, options={"timeout": 1})
    forker.register(_sleep_forever, options={"timeout": 2})

    started = time.monotonic()
    assert forker.run() == {0: -15, 1: -15, 2: -15}
    assert time.monotonic() - started < 30


def test_negative_timeout_signals_the_child_immediately(settings):
    forker = Forker(settings=settings)
    forker.register(_sleep_forever, options={"timeout": -1})

    started = time.monotonic()
    assert forker.run() == {0: -15}
    assert time.monotonic() - started < 30


def test_timeout_signal_can_be_chosen(settings):
    forker = Forker(settings=settings)
    forker.register(_sleep_forever, options={"timeouts": [{"signal": signal.SIGKILL, "timeout": 0.5}]})

    assert forker.run() == {0: -signal.SIGKILL}


def test_multiple_timeouts_can_be_set_for_one_process(settings):
    forker = Forker(settings=settings)

    def count_signals(data):
        result = [0]
        done = [False]

        def add_signal(signum, frame):
            result[0] += signum

        def finish(signum, frame):
            done[0] = True

        signal.signal(signal.SIGTERM, add_signal)
        signal.signal(signal.SIGHUP, add_signal)
        signal.signal(signal.SIGQUIT, finish)
        while not done[0]:
            time.sleep(0.05)
        return result[0]

    forker.register(count_signals, options={
        "timeouts": [
            {"signal": signal.SIGTERM, "timeout": 1},
            {"signal": signal.SIGHUP, "timeout": 1},
            {"signal": signal.SIGQUIT, "timeout": 3},
        ],
        "timeout": 2,
    })

    assert forker.run() == {0: (signal.SIGTERM * 2) + signal.SIGHUP}


def test_child_does_not_have_alarm_signal_handler_set(settings):
    forker = Forker(settings=settings)
    forker.register(_kill_self(signal.SIGALRM), options={"timeout": 1})

    assert forker.run() == {0: -signal.SIGALRM}


def test_units_finishing_out_of_order_keep_their_outcomes(settings):
    reaped = []
    forker = Forker(on_child_exited=lambda outcome, data: reaped.append(data), settings=settings)

    def slow(data):
        time.sleep(0.5)
        return 1

    forker.register(slow, data="slow")
    forker.register(_returns(2), data="fast")

    assert forker.run() == {0: 1, 1: 2}
    assert sorted(reaped) == ["fast", "slow"]


@pytest.mark.parametrize("callback, expected", [
    (lambda data: None, 0),
    (lambda data: True, 1),
    (lambda data: "7", 7),
    (lambda data: 300, 300 & 0xFF),
    (lambda data: sys.exit(9), 9),
    (lambda data: sys.exit("bye"), 1),
    (lambda data: 1 / 0, 255),
    (lambda data: object(), 255),
])
def test_callback_result_is_coerced_to_exit_code(settings, callback, expected):
    forker = Forker(settings=settings)
    forker.register(callback)

    assert forker.run() == {0: expected}


def test_child_error_exit_code_is_configurable(settings):
    settings.CHILD_ERROR_EXIT_CODE = 17
    forker = Forker(settings=settings)
    forker.register(lambda data: [][1])

    assert forker.run() == {0: 17}


def _failing_fork(monkeypatch, fail_on_call):
    real_fork = os.fork
    calls = []

    def fake_fork():
        calls.append(1)
        if len(calls) == fail_on_call:
            raise BlockingIOError(11, "Resource temporarily unavailable")
        return real_fork()

    monkeypatch.setattr(os, "fork", fake_fork)
    return calls


def test_fork_failure_raises_after_draining_spawned_children(settings, monkeypatch):
    _failing_fork(monkeypatch, fail_on_call=2)
    forker = Forker(settings=settings)
    forker.register(_returns(0))
    forker.register(_returns(2), data={"fork_name": "broken"})
    forker.register(_returns(3))

    with pytest.raises(ForkFailed) as excinfo:
        forker.run()

    assert excinfo.value.unit_index == 1
    assert excinfo.value.data == {"fork_name": "broken"}
    assert excinfo.value.partial_results == {0: 0}
    assert isinstance(excinfo.value.__cause__, OSError)


def test_fork_failure_hook_can_continue_the_run(settings, monkeypatch):
    _failing_fork(monkeypatch, fail_on_call=2)
    failures = []
    forker = Forker(on_fork_failed=lambda index, data: failures.append((index, data)), settings=settings)
    forker.register(_returns(0))
    forker.register(_returns(2), data="skipped")
    forker.register(_returns(3))

    assert forker.run() == {0: 0, 2: 3}
    assert failures == [(1, "skipped")]


def test_exit_hook_error_is_raised_after_all_children_are_reaped(settings):
    reaped = []

    def on_exit_status(code, data):
        reaped.append(code)
        if code == 2:
            raise ValueError("hook failed")

    forker = Forker(on_exit_status=on_exit_status, settings=settings)
    for code in (0, 2, 3):
        forker.register(_returns(code))

    with pytest.raises(ValueError, match="hook failed") as excinfo:
        forker.run()
    assert sorted(reaped) == [0, 2, 3]
    assert excinfo.value.partial_results == {0: 0, 1: 2, 2: 3}


def test_parent_signal_handlers_are_restored(settings, restore_signals):
    def custom_handler(signum, frame):
        pass

    signal.signal(signal.SIGALRM, custom_handler)
    forker = Forker(settings=settings)
    forker.register(_returns(0), options={"timeout": 5})
    forker.run()

    assert signal.getsignal(signal.SIGALRM) is custom_handler
    assert signal.getsignal(signal.SIGCHLD) == restore_signals[signal.SIGCHLD]
    assert signal.getitimer(signal.ITIMER_REAL)[0] == 0


def test_run_outside_main_thread_is_rejected(settings):
    forker = Forker(settings=settings)
    forker.register(_returns(0))
    errors = []

    def target():
        try:
            forker.run()
        except RuntimeError as e:
            errors.append(e)

    thread = threading.Thread(target=target)
    thread.start()
    thread.join()

    assert len(errors) == 1
    assert not forker.has_run
    assert forker.run() == {0: 0}
