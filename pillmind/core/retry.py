"""
Reintentos con backoff exponencial para operaciones de almacenamiento
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional, TypeVar

from pillmind.core.exceptions import TransientReason, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALL_TRANSIENT_REASONS = frozenset(TransientReason)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Política de reintentos.

    Delay = min(initial_delay * multiplier ** (intento - 1), max_delay)

    Solo se reintentan TransientStoreError cuyo motivo esté en retry_on;
    cualquier otro error se propaga en el primer intento.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    retry_on: FrozenSet[TransientReason] = field(default=ALL_TRANSIENT_REASONS)

    def delay_for(self, attempt: int) -> float:
        """Espera antes del intento attempt + 1"""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, TransientStoreError) and error.reason in self.retry_on

    @classmethod
    def from_millis(
            cls,
            max_attempts: int,
            initial_delay_ms: int,
            max_delay_ms: int = 10000,
            retry_on: FrozenSet[TransientReason] = ALL_TRANSIENT_REASONS
    ) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            initial_delay=initial_delay_ms / 1000.0,
            max_delay=max_delay_ms / 1000.0,
            retry_on=frozenset(retry_on),
        )


def retry_with_backoff(
        func: Callable[[], T],
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        operation: str = "operación"
) -> T:
    """
    Ejecutar func reintentando errores transitorios.

    Bloquea solo al hilo que llama. Si se agotan los intentos se propaga el
    último error.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except Exception as e:
            if attempt >= policy.max_attempts or not policy.is_retryable(e):
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"Reintentando {operation} (intento {attempt}/{policy.max_attempts}) "
                f"en {delay:.2f}s: {e}"
            )
            if on_retry:
                on_retry(attempt, e, delay)
            sleep(delay)
