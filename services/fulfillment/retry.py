# NG-HEADER: Nombre de archivo: retry.py
# NG-HEADER: Ubicación: services/fulfillment/retry.py
# NG-HEADER: Descripción: Primitiva genérica de polling acotado y presupuesto de tiempo
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Polling acotado con backoff y presupuesto global de tiempo.

Envoltorio sobre ``tenacity.AsyncRetrying``. No depende del motor de
automatización: recibe un predicado asíncrono y funciones ``sleep``/``clock``
inyectables, de modo que se puede testear con un reloj falso.

Uso:
    text = await poll_until(read_banner, interval=0.3, max_attempts=10)
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


class RetryExhausted(Exception):
    """Se agotaron los intentos (o el deadline) sin que el predicado se cumpla."""

    def __init__(self, attempts: int, *, deadline_hit: bool = False) -> None:
        reason = "deadline" if deadline_hit else "max attempts"
        super().__init__(f"predicate not satisfied after {attempts} attempts ({reason})")
        self.attempts = attempts
        self.deadline_hit = deadline_hit


class Deadline:
    """Presupuesto de tiempo de pared independiente de los intervalos de polling."""

    def __init__(self, budget: Optional[float], *, clock: ClockFn = time.monotonic) -> None:
        self.budget = budget
        self._clock = clock
        self._start = clock()

    def remaining(self) -> Optional[float]:
        if self.budget is None:
            return None
        return max(0.0, self.budget - (self._clock() - self._start))

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


def stop_when_expired(deadline: Deadline) -> Callable[[RetryCallState], bool]:
    """Condición de corte de tenacity atada a un ``Deadline``."""

    def _stop(retry_state: RetryCallState) -> bool:
        return deadline.expired

    return _stop


def _capped_wait(
    interval: float, backoff: float, max_interval: Optional[float], deadline: Optional[Deadline]
) -> Callable[[RetryCallState], float]:
    base = wait_exponential(
        multiplier=interval,
        exp_base=backoff,
        max=max_interval if max_interval is not None else float("inf"),
    )

    def _wait(retry_state: RetryCallState) -> float:
        wait = base(retry_state)
        remaining = deadline.remaining() if deadline is not None else None
        return wait if remaining is None else min(wait, remaining)

    return _wait


async def poll_until(
    predicate: Callable[[], Awaitable[Optional[T]]],
    *,
    interval: float,
    max_attempts: int,
    deadline: Optional[Deadline] = None,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Evalúa ``predicate`` hasta que devuelva un valor truthy.

    - Devuelve el primer valor truthy obtenido.
    - Entre intentos espera ``interval`` (multiplicado por ``backoff`` en cada vuelta,
      con tope ``max_interval``); no espera después del último intento.
    - Si el predicado levanta una excepción, se propaga sin reintentar: así el
      llamador puede cortar el polling ante un error definitivo.
    - Levanta ``RetryExhausted`` si se agotan los intentos o el ``deadline``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts debe ser >= 1")
    attempts = 0

    async def _attempt() -> Optional[T]:
        nonlocal attempts
        if deadline is not None and deadline.expired:
            raise RetryExhausted(attempts, deadline_hit=True)
        attempts += 1
        return await predicate()

    stop = stop_after_attempt(max_attempts)
    if deadline is not None:
        stop = stop | stop_when_expired(deadline)
    retrying = AsyncRetrying(
        stop=stop,
        wait=_capped_wait(interval, backoff, max_interval, deadline),
        retry=retry_if_result(lambda value: not value),
        sleep=sleep,
    )
    try:
        return await retrying(_attempt)
    except RetryError as e:
        used = e.last_attempt.attempt_number
        raise RetryExhausted(used, deadline_hit=used < max_attempts) from None
