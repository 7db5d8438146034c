"""Replay a chunked reply through the session controller and print the folded message."""

import asyncio

from arth_chat.session import ReplyAccumulator, SessionController
from arth_chat.streaming import IterableByteSource

CHUNKS = [
    b'{"status":"SUC',
    b'CESS","body":{"message":"\xe4\xbd\xa0\xe5',
    b'\xa5\xbd, your portfolio is 60% equities.",',
    b'"suggestedFollowUps":[{"content":"How do I rebalance?"}]}}',
]


async def main() -> None:
    controller = SessionController(lambda sid, msg, medias: IterableByteSource(CHUNKS))
    reply = ReplyAccumulator()
    handle = await controller.send("session_demo", "Analyze my portfolio", callbacks=reply)
    await handle.wait()
    print("Assistant:", reply.message.text)
    for follow_up in reply.message.suggested_follow_ups:
        print("  ->", follow_up.content)


if __name__ == "__main__":
    asyncio.run(main())
