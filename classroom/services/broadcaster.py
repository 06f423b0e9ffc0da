"""
Class Broadcaster

Fan-out of session events to every WebSocket subscribed to a class.

With Redis configured, events are published on `classroom:{class_id}` and
each worker relays them to its own local subscribers, so a transition
handled by one worker reaches clients connected to any worker. Without
Redis, events are delivered locally. Delivery is best-effort: a failed send
drops the subscriber.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "classroom:"

# Pause before re-subscribing after the relay loses its Redis connection
RELAY_RETRY_SECONDS = 2.0


def channel_for(class_id: str) -> str:
    return f"{CHANNEL_PREFIX}{class_id}"


class Subscriber:
    """One connected participant"""

    def __init__(self, websocket: Any, user_id: str, role: str, group_id: Optional[int] = None):
        self.websocket = websocket
        self.user_id = user_id
        self.role = role
        self.group_id = group_id


class Broadcaster:
    """Per-class subscriber registry with optional Redis relay"""

    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        relay_retry_seconds: float = RELAY_RETRY_SECONDS,
    ):
        self._lock = asyncio.Lock()
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._redis = redis
        self._relay_task: Optional[asyncio.Task] = None
        self.relay_retry_seconds = relay_retry_seconds

    async def add(self, class_id: str, subscriber: Subscriber) -> None:
        async with self._lock:
            self._subscribers.setdefault(class_id, []).append(subscriber)

    async def remove(self, class_id: str, websocket: Any) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(class_id, [])
            self._subscribers[class_id] = [s for s in subscribers if s.websocket is not websocket]
            if not self._subscribers[class_id]:
                self._subscribers.pop(class_id, None)

    async def list(self, class_id: str) -> List[Subscriber]:
        async with self._lock:
            return list(self._subscribers.get(class_id, []))

    async def online_users(self, class_id: str) -> List[str]:
        """Distinct user ids currently connected to the class"""
        subscribers = await self.list(class_id)
        return sorted({s.user_id for s in subscribers})

    async def send(self, class_id: str, subscriber: Subscriber, payload: Dict[str, Any]) -> bool:
        """Send to one subscriber; drops it on failure"""
        try:
            await subscriber.websocket.send_json(jsonable_encoder(payload))
            return True
        except Exception as e:
            logger.info(f"Dropping subscriber {subscriber.user_id} from class {class_id}: {e}")
            await self.remove(class_id, subscriber.websocket)
            return False

    async def deliver_local(self, class_id: str, payload: Dict[str, Any]) -> int:
        """Send to every subscriber connected to this worker; returns successful sends"""
        delivered = 0
        for subscriber in await self.list(class_id):
            if await self.send(class_id, subscriber, payload):
                delivered += 1
        return delivered

    async def publish(self, class_id: str, payload: Dict[str, Any]) -> None:
        """
        Broadcast an event to all subscribers of a class.

        Falls back to local delivery if the Redis publish fails.
        """
        if self._redis is not None:
            try:
                await self._redis.publish(channel_for(class_id), json.dumps(jsonable_encoder(payload)))
                return
            except Exception as e:
                logger.warning(f"Redis publish failed for class {class_id}, delivering locally: {e}")

        delivered = await self.deliver_local(class_id, payload)
        logger.debug(f"Delivered {payload.get('type')} to {delivered} subscribers of class {class_id}")

    async def broadcast_presence(self, class_id: str) -> None:
        await self.publish(class_id, {
            "type": "users-online",
            "class_id": class_id,
            "online_users": await self.online_users(class_id),
        })

    async def start_relay(self, redis: aioredis.Redis) -> None:
        """Subscribe to every class channel and relay to local subscribers"""
        self._redis = redis
        self._relay_task = asyncio.create_task(self._relay(redis))
        logger.info("Broadcast relay started")

    async def stop_relay(self) -> None:
        if self._relay_task is not None:
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay_task = None
        self._redis = None

    async def _relay(self, redis: aioredis.Redis) -> None:
        """
        Relay loop; runs until cancelled.

        A dropped subscription (Redis restart, network error) is logged and
        re-established after a short pause.
        """
        while True:
            pubsub = redis.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
                logger.info("Broadcast relay subscribed to Redis")
                async for message in pubsub.listen():
                    if message.get("type") != "pmessage":
                        continue
                    class_id = str(message["channel"])[len(CHANNEL_PREFIX):]
                    try:
                        payload = json.loads(message["data"])
                    except (TypeError, ValueError):
                        logger.warning(f"Discarding malformed relay message on {message['channel']}")
                        continue
                    await self.deliver_local(class_id, payload)
                logger.warning("Broadcast relay subscription ended; resubscribing")
            except Exception as e:
                logger.warning(
                    f"Broadcast relay lost its Redis subscription, retrying in "
                    f"{self.relay_retry_seconds}s: {e}"
                )
            finally:
                await pubsub.aclose()

            await asyncio.sleep(self.relay_retry_seconds)


# Singleton instance
_broadcaster = None


def get_broadcaster() -> Broadcaster:
    """Get singleton Broadcaster instance"""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster()
    return _broadcaster
