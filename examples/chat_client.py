"""Chat client for a KIT server.

Joins a chat room, prints pushed messages, and forwards lines typed on
stdin as chat messages.

    pip install kit-client

    python examples/chat_client.py --url ws://localhost:12345/websocket --name ann
"""

import argparse
import asyncio
import signal
import sys

from kit_client import EVENT_RECONNECTED, EVENT_RECONNECTING, connect


async def read_lines(queue: asyncio.Queue) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            await queue.put(None)
            return
        await queue.put(line.rstrip("\n"))


async def main(url: str, name: str, debug: bool):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with connect(url, log=debug) as session:
        session.subscribe("onChat", lambda body: print(f"<{body['name']}> {body['msg']}"))
        session.subscribe("onJoin", lambda body: print(f"* {body['name']} joined"))
        session.subscribe(
            EVENT_RECONNECTING,
            lambda attempt, delay: print(f"! link lost, retry {attempt} in {delay}s"),
        )
        session.subscribe(EVENT_RECONNECTED, lambda: print("! reconnected"))

        joined = await session.call("room.Join", {"name": name})
        print(f"Joined as {name} ({joined}), session {session.session_id}")

        lines: asyncio.Queue = asyncio.Queue()
        reader = asyncio.create_task(read_lines(lines))
        stopper = asyncio.create_task(stop.wait())
        try:
            while not stop.is_set():
                getter = asyncio.create_task(lines.get())
                done, _ = await asyncio.wait(
                    {getter, stopper}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter not in done:
                    getter.cancel()
                    break
                line = getter.result()
                if line is None:
                    break
                if line:
                    session.notify("room.Say", {"name": name, "msg": line})
        finally:
            reader.cancel()
            stopper.cancel()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="KIT chat client")
    parser.add_argument("--url", default="ws://localhost:12345/websocket")
    parser.add_argument("--name", required=True)
    parser.add_argument("--debug", action="store_true", help="Log session lifecycle")
    args = parser.parse_args()

    asyncio.run(main(args.url, args.name, args.debug))
