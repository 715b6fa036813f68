from rhumb.frames import CallFrame
from rhumb.values import Chunk, Closure, Function


def _closure(name):
    return Closure(fn=Function(name=name, chunk=Chunk()))


def test_defaults():
    frame = CallFrame(closure=_closure("<script>"))
    assert frame.parent is None
    assert frame.ip == 0
    assert frame.base == 0
    assert frame.monitor is None


def test_depth_of_root():
    assert CallFrame(closure=_closure("root")).depth() == 1


def test_depth_of_chain():
    root = CallFrame(closure=_closure("root"))
    child = CallFrame(closure=_closure("child"), parent=root)
    grandchild = CallFrame(closure=_closure("grandchild"), parent=child)
    assert grandchild.depth() == 3
    assert child.depth() == 2
    assert root.depth() == 1


def test_frames_compare_by_identity():
    closure = _closure("same")
    first = CallFrame(closure=closure)
    second = CallFrame(closure=closure)
    assert first == first
    assert not (first == second)


def test_cactus_stack_keeps_returned_frames():
    root = CallFrame(closure=_closure("<script>"))
    current = root

    child_a = CallFrame(closure=_closure("ChildA"), parent=current, base=0)
    current = child_a
    assert current.parent is root

    current = current.parent
    assert current is root
    assert child_a.parent is root

    child_b = CallFrame(closure=_closure("ChildB"), parent=current, base=0)
    current = child_b

    assert child_a.closure.fn.name == "ChildA"
    assert child_b.closure.fn.name == "ChildB"
    assert child_a.parent is child_b.parent

    child_a.ip = 99
    assert child_a.ip == 99
    assert child_b.ip == 0


def test_monitor_is_kept():
    selector = _closure("selector")
    frame = CallFrame(closure=_closure("target"), monitor=selector)
    assert frame.monitor is selector
    assert frame.monitor.canonical() == "<selector>"