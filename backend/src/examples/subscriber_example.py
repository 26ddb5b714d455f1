import argparse
import asyncio
import json

from schemas import ViewerSelection
from utilities import DEFAULT_TOPIC, DEFAULT_WINDOW_SIZE, VIEWER_SERVER_URL, configure_logging
from viewer import ControlSurface, HttpTopicLister, StreamSession, make_feed


def print_window(items, auto_follow=True):
    # a terminal always follows the tail; auto_follow only decides whether we redraw
    if not auto_follow:
        return
    print("\033[2J\033[H", end="")
    for item in items:
        if item.is_structured:
            print(json.dumps(item.value, indent=2))
        else:
            print(item.value)
    print("-" * 40)


async def main():
    parser = argparse.ArgumentParser(description="Live view of a topic")
    parser.add_argument("--topic", default=DEFAULT_TOPIC)
    parser.add_argument("--limit", type=int, default=DEFAULT_WINDOW_SIZE)
    parser.add_argument("--server", default=VIEWER_SERVER_URL)
    parser.add_argument("--transport", choices=["ws", "sse"], default="sse")
    args = parser.parse_args()
    configure_logging()

    session = StreamSession(make_feed(args.transport, args.server))
    controls = ControlSurface(session, ViewerSelection(topic=args.topic, window_size=args.limit))
    session.on_update = lambda items: print_window(items, controls.auto_follow)
    topics = await controls.load_topics(HttpTopicLister(args.server))
    print("Topics:", ", ".join(topics) or "(none)")
    async with session:
        controls.start()
        print("Awaiting messages... (press Ctrl+C to exit)")
        while True:
            await asyncio.sleep(1)
            if session.last_error is not None:
                print("Feed closed:", session.last_error)
                break

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Stopped.")
