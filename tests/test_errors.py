import unittest

from scopedpy import CloseError, NotCloseableError, add_suppressed, render, suppressed_of


class TestSuppressed(unittest.TestCase):
    def test_foreign_exception_gets_ordered_list(self):
        primary = ValueError("body failed")
        a = CloseError(hint="a", cause=OSError("one"))
        b = CloseError(hint="b", cause=OSError("two"))
        self.assertEqual(suppressed_of(primary), [])
        self.assertIs(add_suppressed(primary, a), primary)
        add_suppressed(primary, b)
        self.assertEqual(suppressed_of(primary), [a, b])
        self.assertEqual(len(primary.__notes__), 2)
        self.assertIn("hint='a'", primary.__notes__[0])

    def test_close_error_field(self):
        primary = CloseError(hint="x")
        other = CloseError(hint="y")
        add_suppressed(primary, other)
        self.assertEqual(primary.suppressed, [other])

    def test_cannot_suppress_itself(self):
        e = ValueError("x")
        with self.assertRaises(ValueError):
            add_suppressed(e, e)

    def test_messages(self):
        self.assertEqual(str(CloseError(hint="conn")), "Error during closing (hint='conn')")
        self.assertEqual(str(CloseError()), "Error during closing")
        self.assertIn("[1, 2]", str(NotCloseableError([1, 2])))


class TestRender(unittest.TestCase):
    def test_render_trail(self):
        primary = ValueError("body failed")
        add_suppressed(primary, CloseError(hint="b", cause=OSError("disk gone")))
        out = render(primary)
        self.assertEqual(out, (
            "ValueError('body failed')\n"
            "  Suppressed:\n"
            "    CloseError('Error during closing') hint='b'\n"
            "      Cause:\n"
            "        OSError('disk gone')\n"
        ))

    def test_render_stops_at_cycles(self):
        body = ValueError("body failed")
        # a close fn that re-raised the body error puts it in its own chain
        add_suppressed(body, CloseError(hint="a", cause=body))
        out = render(body)
        self.assertEqual(out, (
            "ValueError('body failed')\n"
            "  Suppressed:\n"
            "    CloseError('Error during closing') hint='a'\n"
            "      Cause:\n"
            "        ValueError('body failed') (see above)\n"
        ))
