import threading
from typing import Dict


class ProcessingCounter:
    """
    Mensajes eliminados por procesador. Se crea uno por ejecución y se comparte
    entre los manejadores concurrentes y el muestreo de inactividad.
    Las entradas no se eliminan mientras dura la ejecución.
    """

    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def register(self, identifier: str) -> None:
        with self._lock:
            self._counts.setdefault(identifier, 0)

    def increment(self, identifier: str) -> int:
        with self._lock:
            count = self._counts.get(identifier, 0) + 1
            self._counts[identifier] = count
            return count

    def get(self, identifier: str) -> int:
        with self._lock:
            return self._counts.get(identifier, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)
