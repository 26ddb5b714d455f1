import asyncio
import json
import time
import uuid
import websockets  # lightweight client; to install: pip install websockets

async def main():
    uri = "ws://localhost:8000/ws"
    async with websockets.connect(uri) as ws:
        # structured message with an epoch-millisecond time, then a free-text log line
        messages = [
            {"id": str(uuid.uuid4()), "time": int(time.time() * 1000),
             "payload": {"order_id": "ORD-1", "amount": 9.99, "currency": "USD"}},
            "INFO order ORD-1 accepted",
        ]
        for message in messages:
            msg = {
                "type": "publish",
                "topic": "orders",
                "message": message,
                "request_id": str(uuid.uuid4())
            }
            print("Client Message: ", msg)
            await ws.send(json.dumps(msg))
            resp = await ws.recv()
            print("Server:", resp)

if __name__ == "__main__":
    asyncio.run(main())
