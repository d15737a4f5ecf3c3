from typing import List, Optional, Sequence


class ConfigurationError(ValueError):
    """Configuración ausente o fuera de rango; se detecta antes de vaciar nada."""


class QuiescenceInvariantError(RuntimeError):
    """Fallo interno del muestreo de inactividad de un procesador."""

    def __init__(self, processor_identifier: str, cause: BaseException) -> None:
        super().__init__(
            f"El muestreo de inactividad del procesador '{processor_identifier}' falló: {cause}"
        )
        self.processor_identifier = processor_identifier
        self.cause = cause


class DrainWorkerError(RuntimeError):
    def __init__(self, entity_path: str, cause: BaseException) -> None:
        super().__init__(f"No se pudo vaciar '{entity_path}': {cause}")
        self.entity_path = entity_path
        self.cause = cause


class DrainAggregateError(RuntimeError):
    """Uno o ambos vaciados de un destino fallaron; se reporta cuando los dos terminan."""

    def __init__(
        self,
        target: str,
        errors: Sequence[DrainWorkerError],
        results: Optional[Sequence] = None,
    ) -> None:
        paths = ", ".join(f"'{error.entity_path}'" for error in errors)
        super().__init__(f"Vaciado incompleto de {target}: fallaron {paths}")
        self.target = target
        self.errors: List[DrainWorkerError] = list(errors)
        self.results = list(results or [])


class DrainFailedError(RuntimeError):
    def __init__(self, failures: Sequence[DrainAggregateError], results: Optional[Sequence] = None) -> None:
        targets = ", ".join(failure.target for failure in failures)
        super().__init__(f"Fallaron {len(failures)} destino(s): {targets}")
        self.failures: List[DrainAggregateError] = list(failures)
        self.results = list(results or [])
