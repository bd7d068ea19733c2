"""
AsyncOpenScope: async close functions, async context managers, shielded cleanup.

Run: python examples/async_scope.py
"""
import contextlib

import anyio

from scopedpy import AsyncOpenScope, async_with_open, with_close_fn


class Client:
    def __init__(self, name: str):
        self.name = name

    async def fetch(self, key: str) -> str:
        await anyio.sleep(0.01)
        return f"{self.name}:{key}"

    async def aclose(self) -> None:
        await anyio.sleep(0.01)
        print(f"[client] aclose {self.name}")


@contextlib.asynccontextmanager
async def session(client: Client):
    print("[session] begin")
    yield client
    print("[session] end")


async def main():
    async with AsyncOpenScope() as scope:
        client = await scope.open(Client("api"), "client")
        sess = await scope.enter_async(session(client), "session")
        print("fetch =>", await sess.fetch("user/1"))

    async def release(token):
        await anyio.sleep(0)
        print("[token] release", token)

    out = await async_with_open(
        {
            "client": lambda: Client("cache"),
            "token": lambda client: with_close_fn("tok-1", release),
        },
        lambda client, token: client.fetch(token),
    )
    print("fetch =>", out)

    # Cleanup still runs when the surrounding task is cancelled
    with anyio.move_on_after(0.05):
        async with AsyncOpenScope() as scope:
            await scope.open(Client("slow"), "slow")
            await anyio.sleep(10)


if __name__ == "__main__":
    anyio.run(main)
