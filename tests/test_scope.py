import contextlib
import gc
import io
import unittest

from scopedpy import (
    CloseError,
    OpenScope,
    ScopeClosedError,
    ScopeState,
    add_close_fn,
    close_fn_of,
    suppressed_of,
    with_close_fn,
    with_open,
)
from scopedpy.closeable import _close_fns


class Boom(Exception):
    pass


def recorder(acts: list, err: Exception | None = None):
    def fn(act):
        acts.append(act)
        if err is not None:
            raise err
    return fn


class TestWithOpen(unittest.TestCase):
    def test_no_exception(self):
        acts: list = []
        orig_c = ["c"]

        def body(a, b, c):
            self.assertEqual(a, {"a": 1})
            self.assertEqual(b, [2])
            self.assertIs(c, orig_c)
            acts.append("body")
            return "result"

        out = with_open([
            ("a", lambda: with_close_fn({"a": 1}, recorder(acts))),
            ("b", lambda a: with_close_fn([2], recorder(acts))),
            ("c", lambda a, b: add_close_fn(orig_c, recorder(acts))),
        ], body)
        self.assertEqual(out, "result")
        self.assertEqual(acts, ["body", orig_c, [2], {"a": 1}])
        self.assertIs(acts[1], orig_c)

    def test_body_exception(self):
        acts: list = []
        body_err = Boom("body throw")

        def body():
            acts.append("body")
            raise body_err

        with self.assertRaises(Boom) as cm:
            with_open([
                ("_", lambda: with_close_fn({"a": 1}, recorder(acts))),
                ("_", lambda: with_close_fn([2], recorder(acts))),
                ("_", lambda: with_close_fn("c", recorder(acts))),
            ], body)
        self.assertIs(cm.exception, body_err)
        self.assertEqual(suppressed_of(cm.exception), [])
        self.assertEqual(acts, ["body", "c", [2], {"a": 1}])

    def test_close_exception_hint(self):
        acts: list = []
        with self.assertRaises(CloseError) as cm:
            with_open({
                "a": lambda: with_close_fn({"a": 1}, recorder(acts)),
                "b": lambda a: with_close_fn([2], recorder(acts, Boom("ex2"))),
                "c": lambda a, b: with_close_fn("c", recorder(acts)),
            }, lambda a, b, c: acts.append("body"))
        self.assertEqual(acts, ["body", "c", [2], {"a": 1}])
        self.assertEqual(cm.exception.hint, "b")
        self.assertIsInstance(cm.exception.__cause__, Boom)

    def test_acquisition_failure_closes_earlier_only(self):
        acts: list = []
        acquired: list[str] = []
        acq_err = Boom("cannot acquire b")

        def acquire_b(a):
            raise acq_err

        def acquire_c(a, b):
            acquired.append("c")
            return with_close_fn("c", recorder(acts))

        with self.assertRaises(Boom) as cm:
            with_open([
                ("a", lambda: with_close_fn("a", recorder(acts))),
                ("b", acquire_b),
                ("c", acquire_c),
            ], lambda a, b, c: acts.append("body"))
        self.assertIs(cm.exception, acq_err)
        self.assertEqual(acts, ["a"])
        self.assertEqual(acquired, [])
        self.assertEqual(suppressed_of(cm.exception), [])

    def test_acquisition_failure_keeps_close_errors_suppressed(self):
        acq_err = Boom("cannot acquire b")

        def acquire_b(a):
            raise acq_err

        with self.assertRaises(Boom) as cm:
            with_open([
                ("a", lambda: with_close_fn("a", recorder([], OSError("a close")))),
                ("b", acquire_b),
            ], lambda a, b: None)
        sup = suppressed_of(cm.exception)
        self.assertEqual(len(sup), 1)
        self.assertEqual(sup[0].hint, "a")
        self.assertIsInstance(sup[0].__cause__, OSError)

    def test_body_error_outranks_close_error(self):
        acts: list = []
        x = Boom("X")
        y = OSError("Y")

        def body(a, b):
            raise x

        with self.assertRaises(Boom) as cm:
            with_open([
                ("a", lambda: with_close_fn("A", recorder(acts))),
                ("b", lambda a: with_close_fn("B", recorder(acts, y))),
            ], body)
        self.assertIs(cm.exception, x)
        self.assertEqual(acts, ["B", "A"])
        sup = suppressed_of(cm.exception)
        self.assertEqual(len(sup), 1)
        self.assertEqual(sup[0].hint, "b")
        self.assertIs(sup[0].__cause__, y)

    def test_two_close_failures(self):
        first = OSError("first")
        second = OSError("second")
        with self.assertRaises(CloseError) as cm:
            with_open([
                ("j", lambda: with_close_fn("J", recorder([], second))),
                ("k", lambda j: with_close_fn("K", recorder([], first))),
            ], lambda j, k: "ok")
        ex = cm.exception
        self.assertEqual(ex.hint, "k")
        self.assertIs(ex.__cause__, first)
        self.assertEqual([s.hint for s in ex.suppressed], ["j"])
        self.assertIs(ex.suppressed[0].__cause__, second)

    def test_each_resource_closed_once_with_native_close(self):
        files = [io.StringIO("x") for _ in range(3)]
        out = with_open(
            [(f"f{i}", (lambda f=f, **_: f)) for i, f in enumerate(files)],
            lambda f0, f1, f2: f0.read() + f1.read() + f2.read(),
        )
        self.assertEqual(out, "xxx")
        self.assertTrue(all(f.closed for f in files))

    def test_empty_bindings(self):
        self.assertEqual(with_open([], lambda: 7), 7)


class TestOpenScope(unittest.TestCase):
    def test_reverse_order_and_states(self):
        acts: list = []
        with OpenScope() as scope:
            self.assertIs(scope.state, ScopeState.ACQUIRING)
            a = scope.open(with_close_fn("A", recorder(acts)), "a")
            b = scope.open(with_close_fn("B", recorder(acts)), "b")
            c = scope.open(with_close_fn("C", recorder(acts)), "c")
            self.assertEqual((a, b, c), ("A", "B", "C"))
            self.assertEqual(len(scope), 3)
            scope.begin_body()
            self.assertIs(scope.state, ScopeState.RUNNING_BODY)
        self.assertEqual(acts, ["C", "B", "A"])
        self.assertIs(scope.state, ScopeState.RETURNED)
        self.assertEqual(len(scope), 0)

    def test_failed_state_on_body_error(self):
        with self.assertRaises(Boom):
            with OpenScope() as scope:
                scope.open(None, "absent")
                raise Boom("x")
        self.assertIs(scope.state, ScopeState.FAILED)

    def test_early_return_closes(self):
        acts: list = []

        def fn():
            with OpenScope() as scope:
                scope.open(with_close_fn("A", recorder(acts)), "a")
                return "early"

        self.assertEqual(fn(), "early")
        self.assertEqual(acts, ["A"])

    def test_close_is_idempotent(self):
        acts: list = []
        scope = OpenScope()
        scope.open(with_close_fn("A", recorder(acts)), "a")
        scope.close()
        scope.close()
        self.assertEqual(acts, ["A"])

    def test_explicit_close_raises_close_error(self):
        scope = OpenScope()
        scope.open(with_close_fn("A", recorder([], OSError("bad"))), "a")
        with self.assertRaises(CloseError) as cm:
            scope.close()
        self.assertEqual(cm.exception.hint, "a")
        self.assertIs(scope.state, ScopeState.FAILED)

    def test_open_after_close(self):
        acts: list = []
        scope = OpenScope()
        scope.close()
        with self.assertRaises(ScopeClosedError):
            scope.open(with_close_fn("late", recorder(acts)), "late")
        self.assertEqual(acts, ["late"])

    def test_add_finalizer_after_close_runs_immediately(self):
        called = {"n": 0}
        scope = OpenScope()
        scope.close()
        scope.add_finalizer(lambda: called.__setitem__("n", called["n"] + 1))
        self.assertEqual(called["n"], 1)

    def test_enter_context_managers_and_finalizers(self):
        events: list[str] = []

        @contextlib.contextmanager
        def managed(name):
            events.append(f"enter {name}")
            yield name.upper()
            events.append(f"exit {name}")

        with OpenScope() as scope:
            x = scope.enter(managed("x"), "x")
            scope.add_finalizer(lambda: events.append("fin"), "fin")
            y = scope.enter(managed("y"), "y")
            self.assertEqual((x, y), ("X", "Y"))
        self.assertEqual(events, ["enter x", "enter y", "exit y", "fin", "exit x"])

    def test_close_error_raised_from_block_without_context(self):
        with self.assertRaises(CloseError) as cm:
            with OpenScope() as scope:
                scope.open(with_close_fn("A", recorder([], OSError("bad"))), "a")
        self.assertIsNone(cm.exception.__context__)


@contextlib.contextmanager
def txn(outcome: list):
    try:
        yield "tx"
    except BaseException as ex:
        outcome.append(("rollback", type(ex).__name__))
        raise
    else:
        outcome.append(("commit", None))


class TestEnteredManagersSeeErrors(unittest.TestCase):
    def test_body_error_rolls_back(self):
        outcome: list = []
        with self.assertRaises(ValueError) as cm:
            with OpenScope() as scope:
                scope.enter(txn(outcome), "txn")
                raise ValueError("body failed")
        self.assertEqual(outcome, [("rollback", "ValueError")])
        self.assertEqual(suppressed_of(cm.exception), [])

    def test_success_commits(self):
        outcome: list = []
        with OpenScope() as scope:
            self.assertEqual(scope.enter(txn(outcome), "txn"), "tx")
        self.assertEqual(outcome, [("commit", None)])

    def test_earlier_close_failure_reaches_manager(self):
        outcome: list = []
        with self.assertRaises(CloseError) as cm:
            with OpenScope() as scope:
                scope.enter(txn(outcome), "txn")
                scope.open(with_close_fn("A", recorder([], OSError("bad"))), "a")
        self.assertEqual(outcome, [("rollback", "CloseError")])
        self.assertEqual(cm.exception.hint, "a")
        self.assertEqual(cm.exception.suppressed, [])


class TestStatementFormState(unittest.TestCase):
    def test_state_stays_acquiring_until_begin_body(self):
        with OpenScope() as scope:
            scope.open(None, "x")
            self.assertIs(scope.state, ScopeState.ACQUIRING)
            scope.begin_body()
            scope.open(None, "late")
            self.assertIs(scope.state, ScopeState.RUNNING_BODY)
            self.assertEqual(len(scope), 2)


class TestCloseFnAttachmentsAreScoped(unittest.TestCase):
    def test_attachment_from_failed_acquisition_is_released(self):
        before = len(_close_fns)

        def acquire():
            add_close_fn([], lambda _r: None)
            raise Boom("after tagging")

        for _ in range(100):
            with self.assertRaises(Boom):
                with_open([("r", acquire)], lambda r: None)
        gc.collect()
        self.assertEqual(len(_close_fns) - before, 0)

    def test_unclosed_attachment_released_with_scope(self):
        before = len(_close_fns)
        ref = {"left": "open"}
        with OpenScope():
            add_close_fn(ref, lambda _r: None)
            self.assertIsNotNone(close_fn_of(ref))
        self.assertIsNone(close_fn_of(ref))
        self.assertEqual(len(_close_fns), before)

    def test_nested_scopes_release_their_own(self):
        outer_ref = ["outer"]
        inner_ref = ["inner"]
        with OpenScope():
            add_close_fn(outer_ref, lambda _r: None)
            with OpenScope():
                add_close_fn(inner_ref, lambda _r: None)
            self.assertIsNone(close_fn_of(inner_ref))
            self.assertIsNotNone(close_fn_of(outer_ref))
        self.assertIsNone(close_fn_of(outer_ref))
