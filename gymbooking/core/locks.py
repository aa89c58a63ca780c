"""
Registro de locks en proceso para serializar escrituras por curso y por miembro.

Orden de adquisición: siempre curso -> miembro, y como máximo un lock de curso
por hilo. En PostgreSQL el SELECT ... FOR UPDATE sobre la fila del curso cubre
además a otros procesos.
"""
from contextlib import contextmanager
from typing import Hashable, Iterator, Optional
import logging
import threading
import weakref

logger = logging.getLogger(__name__)


class LockOrderError(RuntimeError):
    """Se intentó tomar un segundo lock de curso en el mismo hilo."""


class KeyedLockRegistry:
    """
    Locks perezosos indexados por clave (un threading.Lock por clave).

    El registro guarda referencias débiles: un lock vive mientras algún hilo lo
    tenga tomado o esté esperando por él, y después desaparece del mapa.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._locks: "weakref.WeakValueDictionary[Hashable, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def get(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class RegistrationLocks:
    """
    Scope serializado para una operación de inscripción.

    `hold(course_id, member_id)` toma el lock del curso y, si se indica, el del
    miembro. Reentrar con otro curso en el mismo hilo es un error de programación.
    """

    def __init__(self) -> None:
        self._courses = KeyedLockRegistry("course")
        self._members = KeyedLockRegistry("member")
        self._local = threading.local()

    @contextmanager
    def hold(self, course_id: int, member_id: Optional[int] = None) -> Iterator[None]:
        held = getattr(self._local, "course_id", None)
        if held is not None:
            raise LockOrderError(
                f"El hilo ya tiene el lock del curso {held}; no puede tomar el del curso {course_id}"
            )

        course_lock = self._courses.get(course_id)
        course_lock.acquire()
        self._local.course_id = course_id
        try:
            if member_id is None:
                yield
            else:
                with self._members.get(member_id):
                    yield
        finally:
            self._local.course_id = None
            course_lock.release()

    @contextmanager
    def hold_member(self, member_id: int) -> Iterator[None]:
        """Lock solo de miembro (ajustes de créditos fuera de un curso)."""
        with self._members.get(member_id):
            yield


# Instancia compartida por el proceso
registration_locks = RegistrationLocks()
