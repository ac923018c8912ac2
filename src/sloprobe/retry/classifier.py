"""Transient-fault classification over error cause chains."""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable

from .models import ErrorChain, ErrorDetail, FaultKind

Classifier = Callable[[ErrorChain], FaultKind]

_CODE_ATTRIBUTES = ("number", "code", "errno")
_MAX_CHAIN_DEPTH = 32


def _error_code(exc: BaseException) -> int | None:
    for name in _CODE_ATTRIBUTES:
        value = getattr(exc, name, None)
        # bool is an int subclass; a True "code" is never an error number.
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    return bool(getattr(exc, "is_timeout", False))


def _detail(exc: BaseException) -> ErrorDetail:
    message = getattr(exc, "message", None)
    if not isinstance(message, str):
        message = str(exc)
    return ErrorDetail(
        message=message,
        code=_error_code(exc),
        is_timeout=_is_timeout(exc),
        error_type=type(exc).__name__,
    )


def _next_cause(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__suppress_context__:
        return None
    return exc.__context__


def describe_error(exc: BaseException) -> ErrorChain:
    """Flatten an exception and its causes into descriptors, outer to inner."""
    chain: list[ErrorDetail] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen and len(chain) < _MAX_CHAIN_DEPTH:
        seen.add(id(current))
        chain.append(_detail(current))
        current = _next_cause(current)
    return tuple(chain)


def classify(chain: Iterable[ErrorDetail], transient_codes: Collection[int]) -> FaultKind:
    for node in chain:
        if node.code is not None and node.code in transient_codes:
            return FaultKind.TRANSIENT
        if node.is_timeout:
            return FaultKind.TRANSIENT
    return FaultKind.PERMANENT


def code_classifier(transient_codes: Collection[int]) -> Classifier:
    codes = frozenset(transient_codes)

    def _classify(chain: ErrorChain) -> FaultKind:
        return classify(chain, codes)

    return _classify
