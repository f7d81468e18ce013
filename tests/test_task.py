import pytest

from bbkcli.eventloop import EventLoop
from bbkcli.task import Task


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


class Recorder(Task):
    def __init__(self, label):
        super().__init__(label)
        self.received = []
        self.messages = []

    def handle_execution(self, sender, message):
        self.received.append((sender, message))

    def task_message(self, task):
        self.messages.append(task.message)


@pytest.fixture
def loop():
    with EventLoop("TaskTest", FakeClock()) as ev:
        yield ev


def test_set_result_marks_finished_and_notifies(loop):
    task = Task("t")
    loop.add_task(task)
    task.set_result("done")
    assert task.result == "done"
    assert task.terminated
    assert task.finished_ok()
    assert loop.run(1.0) is False
    assert not loop.running(task)


def test_second_result_is_ignored(loop):
    task = Task("t")
    loop.add_task(task)
    task.set_result("first")
    task.set_result("second")
    assert task.result == "first"


def test_result_before_start_does_not_notify(loop):
    task = Task("t")
    task.set_result("early")
    assert task.terminated
    assert task.result == "early"
    assert not loop.running(task)
    assert loop.run(1.0) is False


def test_set_error_is_not_ok(loop):
    task = Task("t")
    loop.add_task(task)
    task.set_error("no agent")
    assert task.result == "no agent"
    assert task.is_error
    assert not task.finished_ok()


def test_set_timeout_is_not_ok(loop):
    task = Task("t")
    loop.add_task(task)
    task.set_timeout()
    assert task.is_timeout
    assert task.result == "Timeout"
    assert not task.finished_ok()


def test_killed_task_is_not_ok(loop):
    task = Task("t")
    loop.add_task(task)
    loop.abort_task(task)
    loop.run(1.0)
    assert task.was_killed
    assert not task.finished_ok()


def test_unfinished_task_has_empty_result():
    task = Task("t")
    assert task.result == ""
    assert not task.terminated
    assert not task.finished_ok()


def test_set_message_reaches_parent(loop):
    parent = Recorder("parent")
    child = Task("child")
    loop.add_task(parent)
    loop.add_task(child, parent)
    child.set_message("progress")
    assert child.message == "progress"
    loop.run(0.5)
    assert parent.messages == ["progress"]


def test_execute_handler_requires_observation(loop):
    sender = Task("sender")
    receiver = Recorder("receiver")
    loop.add_task(sender)
    loop.add_task(receiver)
    assert sender.execute_handler(receiver, "Hi there!") is False
    assert receiver.received == []
    assert sender.start_observing(receiver) is True
    assert sender.execute_handler(receiver, "Hi there!") is True
    assert receiver.received == [(sender, "Hi there!")]


def test_start_observing_without_loop_fails():
    assert Task("a").start_observing(Task("b")) is False


def test_add_new_task_passes_parent(loop):
    parent = Task("parent")
    child = Task("child")
    loop.add_task(parent)
    assert parent.add_new_task(child, parent) is child
    assert loop.running(child)
    assert loop.child_tasks(parent) == {child}


def test_add_new_task_without_loop_raises():
    with pytest.raises(RuntimeError):
        Task("a").add_new_task(Task("b"))


def test_elapsed_uses_clock():
    now = [100.0]
    task = Task("t")
    assert task.elapsed() == 0.0
    task._begin(lambda: now[0])
    now[0] = 102.5
    assert task.elapsed() == 2.5
    assert task.has_started


def test_begin_returns_start_value():
    class Timed(Task):
        def start(self):
            return 1.5

    assert Timed("x")._begin() == 1.5
    assert Task("y")._begin() == 0.0


def test_kill_child_task_when_finished():
    task = Task("t")
    assert task.kill_children is False
    task.kill_child_task_when_finished()
    assert task.kill_children is True


def test_set_terminated_without_result():
    task = Task("t")
    task._set_terminated()
    assert task.terminated
    assert not task.finished_ok()