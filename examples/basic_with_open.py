"""
with_open + OpenScope: reverse-order closing and error aggregation.

Run: python examples/basic_with_open.py
"""
import io
import threading

from scopedpy import (
    OpenScope,
    CloseError,
    with_open,
    with_close_fn,
    add_close_fn,
    render,
    settings,
)


class Connection:
    def __init__(self, name: str):
        self.name = name
        print(f"[conn] open {name}")

    def query(self, x: int) -> int:
        return x * 3

    def close(self) -> None:
        print(f"[conn] close {self.name}")


def main():
    # Functional form: each acquisition sees the values bound before it
    val = with_open(
        [
            ("conn", lambda: Connection("primary")),
            ("cfg", lambda conn: with_close_fn({"retries": 3}, lambda c: print("[cfg] release", c))),
            ("buf", lambda conn, cfg: add_close_fn([], lambda b: print("[buf] flush", b))),
        ],
        lambda conn, cfg, buf: buf.append(conn.query(cfg["retries"])) or buf[0],
    )
    print("query =>", val)  # 9; closes buf, cfg, conn

    # Statement form with a lock and a finalizer
    with OpenScope() as scope:
        out = scope.open(io.StringIO(), "out")
        scope.enter(threading.Lock(), "lock")
        scope.add_finalizer(lambda: print("[fin] done"), "fin")
        out.write("hello")

    # Body error wins; close failures ride along as suppressed errors
    def broken_close(_):
        raise OSError("disk gone")

    with settings(log_level="WARN"):
        try:
            with_open(
                [("a", lambda: Connection("a")), ("b", lambda a: with_close_fn("b", broken_close))],
                lambda a, b: 1 / 0,
            )
        except ZeroDivisionError as ex:
            print(render(ex), end="")

    # No body error: the first close failure is raised
    try:
        with_open([("b", lambda: with_close_fn("b", broken_close))], lambda b: None)
    except CloseError as ex:
        print("close failed for", ex.hint, "->", repr(ex.__cause__))


if __name__ == "__main__":
    main()
