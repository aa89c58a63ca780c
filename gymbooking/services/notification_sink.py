"""
Destinos de las notificaciones de promoción.

El núcleo solo llama a `emit(payload)`; la entrega real (push, email, webhook)
la hace quien consume la cola.
"""
from typing import Any, Dict, Optional
import json
import logging

import redis

from gymbooking.core.config import get_settings

logger = logging.getLogger(__name__)


class NotificationSink:
    """Interfaz: `emit` debe lanzar excepción si la entrega falla."""

    def emit(self, notification: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    def emit(self, notification):
        logger.info(
            f"Promoción: socio {notification.get('member_id')} ahora inscrito en "
            f"curso {notification.get('course_id')} ({notification.get('course_title')})"
        )


class RedisNotificationSink(NotificationSink):
    """Encola el payload JSON en una lista de Redis (RPUSH)."""

    def __init__(self, redis_url: str, queue: str, client: Optional[redis.Redis] = None,
                 socket_timeout: int = 5):
        self.queue = queue
        self._client = client or redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout
        )

    def emit(self, notification):
        message = json.dumps(notification, default=str)
        length = self._client.rpush(self.queue, message)
        logger.debug(f"Promoción encolada en {self.queue} (longitud {length})")


def get_notification_sink() -> NotificationSink:
    settings = get_settings()
    if settings.NOTIFICATION_SINK == "redis":
        logger.info(f"Usando RedisNotificationSink (cola {settings.REDIS_PROMOTION_QUEUE})")
        return RedisNotificationSink(
            settings.REDIS_URL,
            settings.REDIS_PROMOTION_QUEUE,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT
        )
    return LoggingNotificationSink()
