import json
import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, HTTPException

from models import Broker, LogDirectorySource, Subscriber, Topic, is_log_name, list_log_files
from schemas import CreateTopicRequest
from utilities import make_error, make_ack, make_pong, sse_frame, configure_logging
from utilities import DEFAULT_SSE_LIMIT, HEARTBEAT_INTERVAL, LOG_DIR

configure_logging()
logger = logging.getLogger(__name__)

# Global registry
BROKER = Broker()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # publish *.log files from LOG_DIR as topics for the life of the app
    tail_task = asyncio.create_task(LogDirectorySource(LOG_DIR, BROKER).run())
    try:
        yield
    finally:
        tail_task.cancel()
        try:
            await tail_task
        except asyncio.CancelledError:
            pass

app = FastAPI(title="Live Topic Feed", lifespan=lifespan)

# Stats
START_TS = datetime.now(timezone.utc)

# -------------- WebSocket handling --------------
async def subscriber_sender_loop(sub: Subscriber):
    """
    Background task per subscriber: read from queue and send over websocket.
    """
    websocket = sub.websocket
    try:
        while sub.connected:
            item = await sub.queue.get()
            # item should already be serializable dict
            try:
                await websocket.send_text(json.dumps(item))
            except Exception as exc:
                # (broken pipe / closed) -> stop
                logger.debug("sender for %s stopped: %s", sub.client_id, exc)
                break
    except asyncio.CancelledError:
        # Graceful cancellation
        pass
    finally:
        sub.connected = False

def _raw_text(message) -> str:
    # objects travel as JSON text so every subscriber sees the same raw message
    if isinstance(message, str):
        return message
    return json.dumps(message)

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    try:
        while True:
            data = await ws.receive_text()
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                await ws.send_text(json.dumps(make_error(None, "BAD_REQUEST", "invalid json")))
                continue
            if not isinstance(payload, dict):
                await ws.send_text(json.dumps(make_error(None, "BAD_REQUEST", "expected an object")))
                continue
            # parse minimal fields
            typ = payload.get("type")
            request_id = payload.get("request_id")
            # ping
            if typ == "ping":
                await ws.send_text(json.dumps(make_pong(request_id)))
                continue

            if typ == "subscribe":
                topic_name = payload.get("topic")
                client_id = payload.get("client_id")
                try:
                    last_n = int(payload.get("last_n") or 0)
                except (TypeError, ValueError):
                    await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", "last_n must be an integer")))
                    continue
                if not topic_name or not client_id:
                    await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", "topic and client_id required")))
                    continue
                # get topic
                try:
                    topic = await BROKER.get_topic(topic_name)
                except KeyError:
                    await ws.send_text(json.dumps(make_error(request_id, "TOPIC_NOT_FOUND", f"topic {topic_name} not found", topic_name)))
                    continue
                # ack first so the client sees it before any replayed event
                await ws.send_text(json.dumps(make_ack(request_id, topic_name)))
                # register subscriber with replay, then start sender loop
                sub = await topic.add_subscriber(Subscriber(client_id, ws, replay=last_n), last_n)
                sub.sender_task = asyncio.create_task(subscriber_sender_loop(sub))
                logger.info("ws client %s subscribed to %s (last_n=%d)", client_id, topic_name, last_n)
                continue

            if typ == "unsubscribe":
                topic_name = payload.get("topic")
                client_id = payload.get("client_id")
                if not topic_name or not client_id:
                    await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", "topic and client_id required")))
                    continue
                try:
                    topic = await BROKER.get_topic(topic_name)
                except KeyError:
                    await ws.send_text(json.dumps(make_error(request_id, "TOPIC_NOT_FOUND", f"topic {topic_name} not found", topic_name)))
                    continue
                sub = await topic.remove_subscriber(client_id)
                if sub:
                    await sub.stop()
                await ws.send_text(json.dumps(make_ack(request_id, topic_name)))
                continue

            if typ == "publish":
                topic_name = payload.get("topic")
                msg = payload.get("message")
                if not topic_name or not msg:
                    await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", "topic and message required")))
                    continue
                # minimal validation: structured messages carry an id
                if isinstance(msg, dict) and "id" not in msg:
                    await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", "message.id required")))
                    continue
                # check topic exists
                try:
                    topic = await BROKER.get_topic(topic_name)
                except KeyError:
                    await ws.send_text(json.dumps(make_error(request_id, "TOPIC_NOT_FOUND", f"topic {topic_name} not found", topic_name)))
                    continue
                # publish
                await topic.publish(_raw_text(msg))
                await ws.send_text(json.dumps(make_ack(request_id, topic_name)))
                continue

            # unknown type
            await ws.send_text(json.dumps(make_error(request_id, "BAD_REQUEST", f"unknown type: {typ}")))
    except WebSocketDisconnect:
        # cleanup: stop subscriber tasks for any subscribed topics for this websocket
        pass
    except Exception:
        # Unexpected error; attempt to send internal error before closing
        logger.exception("websocket handler failed")
        try:
            await ws.send_text(json.dumps(make_error(None, "INTERNAL", "server error")))
        except Exception:
            pass
    finally:
        # Clean up: remove subscriptions that reference this websocket
        for topic in await BROKER.list_topics():
            async with topic.lock:
                # find subscribers with same websocket and stop & remove
                remove_ids = [cid for cid, s in topic.subscribers.items() if s.websocket is ws]
                removed = [topic.subscribers.pop(cid) for cid in remove_ids]
            for s in removed:
                await s.stop()

# -------------- Server-Sent Events --------------

async def event_stream(request: Request, sub: Subscriber, topic_name: str):
    """Yield SSE frames for ``sub`` until the client goes away or the topic is deleted."""
    try:
        while sub.connected:
            try:
                item = await asyncio.wait_for(sub.queue.get(), timeout=HEARTBEAT_INTERVAL)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                # comment line keeps proxies from closing an idle stream
                yield ": keep-alive\n\n"
                continue
            if item.get("type") == "event":
                yield sse_frame(item["message"])
            elif item.get("type") == "info":
                # topic deleted: end the stream
                break
            else:
                yield "event: error\n" + sse_frame(json.dumps(item["error"]))
    finally:
        try:
            topic = await BROKER.get_topic(topic_name)
        except KeyError:
            pass
        else:
            await topic.remove_subscriber(sub.client_id)
        sub.connected = False
        logger.info("sse client %s left %s", sub.client_id, topic_name)

async def sse_response(request: Request, t: Topic, last_n: int) -> StreamingResponse:
    # replay beyond REPLAY_BUFFER_SIZE is bounded by the topic history
    sub = await t.add_subscriber(Subscriber(f"sse-{uuid.uuid4()}", replay=last_n), last_n)
    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(event_stream(request, sub, t.name), media_type="text/event-stream", headers=headers)

@app.get("/events/{topic}/{limit}")
async def sse_events(topic: str, limit: str, request: Request):
    try:
        last_n = int(limit)
    except ValueError:
        last_n = 0
    if last_n <= 0:
        last_n = DEFAULT_SSE_LIMIT
    try:
        t = await BROKER.get_topic(topic)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"topic {topic} not found")
    return await sse_response(request, t, last_n)

# -------------- Log files --------------

def log_path(filename: str) -> str:
    if not is_log_name(filename):
        raise HTTPException(status_code=400, detail="Invalid file type")
    path = os.path.join(LOG_DIR, filename)
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail=f"{filename} not found")
    return path

@app.get("/files")
async def rest_list_files():
    try:
        files = list_log_files(LOG_DIR)
    except OSError:
        logger.exception("cannot read log directory %s", LOG_DIR)
        raise HTTPException(status_code=500, detail="Error reading directory")
    return {"files": files}

@app.get("/logs/{filename}")
async def sse_log_file(filename: str, request: Request):
    log_path(filename)
    # the tail task may not have seen the file yet
    t = await BROKER.ensure_topic(filename)
    return await sse_response(request, t, DEFAULT_SSE_LIMIT)

@app.get("/download/{filename}")
async def rest_download(filename: str):
    return FileResponse(log_path(filename), media_type="text/plain", filename=filename)

# -------------- REST endpoints --------------

@app.post("/topics", status_code=201)
async def rest_create_topic(req: CreateTopicRequest):
    name = req.name
    if not name:
        raise HTTPException(status_code=400, detail="name required")
    try:
        await BROKER.create_topic(name)
    except KeyError:
        return JSONResponse(status_code=409, content={"status": "conflict", "topic": name})
    return {"status": "created", "topic": name}

@app.delete("/topics/{name}")
async def rest_delete_topic(name: str):
    try:
        await BROKER.delete_topic(name)
    except KeyError:
        raise HTTPException(status_code=404, detail="not found")
    return {"status": "deleted", "topic": name}

@app.get("/topics")
async def rest_list_topics():
    out = []
    for t in await BROKER.list_topics():
        async with t.lock:
            out.append({"name": t.name, "subscribers": len(t.subscribers)})
    return {"topics": out}

@app.get("/produce/{topic}/{message}")
async def rest_produce(topic: str, message: str):
    t = await BROKER.ensure_topic(topic)
    offset = await t.publish(message)
    return {"status": "message produced", "topic": topic, "offset": offset}

@app.get("/health")
async def rest_health():
    now = datetime.now(timezone.utc)
    uptime_sec = int((now - START_TS).total_seconds())
    topics = await BROKER.list_topics()
    subscribers_count = sum(len(t.subscribers) for t in topics)
    return {"uptime_sec": uptime_sec, "topics": len(topics), "subscribers": subscribers_count}

@app.get("/stats")
async def rest_stats():
    out = {}
    for t in await BROKER.list_topics():
        async with t.lock:
            out[t.name] = {
                "messages": t.messages_published,
                "subscribers": len(t.subscribers)
            }
    return {"topics": out}
