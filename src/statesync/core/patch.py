"""JSON Patch (RFC 6902) application over schema-less JSON documents.

:func:`apply_patch` never mutates its inputs. It works on a deep copy of the
document and either returns the fully patched copy or raises a
:class:`~statesync.core.errors.PatchError` describing the first operation that
failed, in which case nothing of the partial result escapes.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from statesync.io.schema import PatchOp, PatchOperation

from .errors import (
    DeltaTooLarge,
    InvalidMove,
    MalformedOperation,
    PatchError,
    PathNotFound,
    TestFailed,
    TypeMismatch,
)
from .pointer import END_OF_ARRAY, is_proper_prefix, parse_array_index, parse_pointer


class _LocationError(Exception):
    """Internal signal raised while walking a pointer, before the operation context is known."""

    def __init__(self, error_cls: type[PatchError], message: str) -> None:
        super().__init__(message)
        self.error_cls = error_cls
        self.message = message


def json_equal(left: Any, right: Any) -> bool:
    """Compare two JSON values the way RFC 6902 ``test`` does.

    Booleans never equal numbers, integers and floats compare by value, object
    member order is irrelevant and array order is significant.
    """

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        return (
            isinstance(left, (int, float))
            and isinstance(right, (int, float))
            and left == right
        )
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        if not (isinstance(left, Mapping) and isinstance(right, Mapping)):
            return False
        if left.keys() != right.keys():
            return False
        return all(json_equal(left[key], right[key]) for key in left)
    if isinstance(left, (list, tuple)) or isinstance(right, (list, tuple)):
        if not (isinstance(left, (list, tuple)) and isinstance(right, (list, tuple))):
            return False
        if len(left) != len(right):
            return False
        return all(json_equal(a, b) for a, b in zip(left, right))
    return type(left) is type(right) and left == right


def normalize_operations(
    operations: Iterable[PatchOperation | Mapping[str, Any]],
    *,
    max_operations: int | None = None,
) -> list[PatchOperation]:
    """Validate every operation of a delta before any of them is applied."""

    if isinstance(operations, (str, bytes, bytearray, Mapping)):
        raise TypeError("operations must be a sequence of patch operations")

    normalized: list[PatchOperation] = []
    for index, candidate in enumerate(operations):
        if max_operations is not None and index >= max_operations:
            raise DeltaTooLarge(
                f"delta exceeds the limit of {max_operations} operations",
                index=index,
            )
        normalized.append(_coerce_operation(candidate, index))
    return normalized


def _coerce_operation(candidate: Any, index: int) -> PatchOperation:
    if isinstance(candidate, PatchOperation):
        return candidate
    if not isinstance(candidate, Mapping):
        raise MalformedOperation(
            f"operation must be a JSON object, got {type(candidate).__name__}",
            index=index,
        )

    op = candidate.get("op")
    path = candidate.get("path")
    try:
        return PatchOperation.model_validate(candidate)
    except ValidationError as exc:
        detail = exc.errors()[0]
        raise MalformedOperation(
            f"malformed operation: {detail['msg']}",
            index=index,
            op=op if isinstance(op, str) else None,
            path=path if isinstance(path, str) else None,
        ) from exc


def apply_patch(
    document: Any,
    operations: Iterable[PatchOperation | Mapping[str, Any]],
    *,
    max_operations: int | None = None,
) -> Any:
    """Apply ``operations`` in order and return the patched document.

    Parameters
    ----------
    document:
        Any JSON value. It is left untouched.
    operations:
        :class:`PatchOperation` instances or their wire mappings. An empty
        sequence returns an equal copy of ``document``.
    max_operations:
        Optional upper bound on the number of operations in the delta.

    Raises
    ------
    PatchError
        One of :class:`MalformedOperation`, :class:`PathNotFound`,
        :class:`TypeMismatch`, :class:`TestFailed` or :class:`InvalidMove`,
        identifying the zero based index of the failing operation.
    """

    normalized = normalize_operations(operations, max_operations=max_operations)
    result = copy.deepcopy(document)
    for index, operation in enumerate(normalized):
        result = _apply_operation(result, operation, index)
    return result


def _apply_operation(document: Any, operation: PatchOperation, index: int) -> Any:
    path = parse_pointer(operation.path)
    # location currently being resolved, reported on failure
    location = operation.path
    try:
        if operation.op is PatchOp.ADD:
            return _add(document, path, copy.deepcopy(operation.value))
        if operation.op is PatchOp.REMOVE:
            document, _ = _remove(document, path)
            return document
        if operation.op is PatchOp.REPLACE:
            return _replace(document, path, copy.deepcopy(operation.value))
        if operation.op is PatchOp.TEST:
            actual = _resolve(document, path)
            if not json_equal(actual, operation.value):
                raise _LocationError(TestFailed, "value does not match the expected value")
            return document

        if operation.from_ is None:
            raise MalformedOperation(
                f"'{operation.op.value}' operation requires 'from'",
                index=index,
                op=operation.op.value,
                path=operation.path,
            )
        source = parse_pointer(operation.from_)
        if operation.op is PatchOp.COPY:
            location = operation.from_
            value = copy.deepcopy(_resolve(document, source))
            location = operation.path
            return _add(document, path, value)

        # move
        if not source:
            location = operation.from_
            raise _LocationError(TypeMismatch, "the document root cannot be moved")
        if is_proper_prefix(source, path):
            raise _LocationError(InvalidMove, f"cannot move {operation.from_!r} into its own child")
        location = operation.from_
        if source == path:
            _resolve(document, source)
            return document
        document, value = _remove(document, source)
        location = operation.path
        return _add(document, path, value)
    except _LocationError as exc:
        raise exc.error_cls(
            f"operation {index} ({operation.op.value} {location!r}): {exc.message}",
            index=index,
            op=operation.op.value,
            path=location,
        ) from None


def _child(container: Any, token: str) -> Any:
    if isinstance(container, dict):
        if token not in container:
            raise _LocationError(PathNotFound, f"member {token!r} does not exist")
        return container[token]
    if isinstance(container, list):
        position = _existing_index(container, token)
        return container[position]
    raise _LocationError(
        TypeMismatch,
        f"cannot resolve {token!r} inside a {type(container).__name__} value",
    )


def _existing_index(container: list[Any], token: str) -> int:
    if token == END_OF_ARRAY:
        raise _LocationError(PathNotFound, "'-' does not designate an existing element")
    position = parse_array_index(token)
    if position is None:
        raise _LocationError(TypeMismatch, f"{token!r} is not a valid array index")
    if position >= len(container):
        raise _LocationError(
            PathNotFound,
            f"index {position} is out of range for an array of length {len(container)}",
        )
    return position


def _resolve(document: Any, tokens: tuple[str, ...]) -> Any:
    current = document
    for token in tokens:
        current = _child(current, token)
    return current


def _add(document: Any, tokens: tuple[str, ...], value: Any) -> Any:
    if not tokens:
        return value
    parent = _resolve(document, tokens[:-1])
    token = tokens[-1]
    if isinstance(parent, dict):
        parent[token] = value
    elif isinstance(parent, list):
        if token == END_OF_ARRAY:
            parent.append(value)
            return document
        position = parse_array_index(token)
        if position is None:
            raise _LocationError(TypeMismatch, f"{token!r} is not a valid array index")
        if position > len(parent):
            raise _LocationError(
                PathNotFound,
                f"index {position} is out of range for an array of length {len(parent)}",
            )
        parent.insert(position, value)
    else:
        raise _LocationError(
            TypeMismatch,
            f"cannot add {token!r} to a {type(parent).__name__} value",
        )
    return document


def _remove(document: Any, tokens: tuple[str, ...]) -> tuple[Any, Any]:
    if not tokens:
        raise _LocationError(TypeMismatch, "the document root cannot be removed")
    parent = _resolve(document, tokens[:-1])
    token = tokens[-1]
    if isinstance(parent, dict):
        if token not in parent:
            raise _LocationError(PathNotFound, f"member {token!r} does not exist")
        return document, parent.pop(token)
    if isinstance(parent, list):
        return document, parent.pop(_existing_index(parent, token))
    raise _LocationError(
        TypeMismatch,
        f"cannot remove {token!r} from a {type(parent).__name__} value",
    )


def _replace(document: Any, tokens: tuple[str, ...], value: Any) -> Any:
    if not tokens:
        return value
    parent = _resolve(document, tokens[:-1])
    token = tokens[-1]
    if isinstance(parent, dict):
        if token not in parent:
            raise _LocationError(PathNotFound, f"member {token!r} does not exist")
        parent[token] = value
    elif isinstance(parent, list):
        parent[_existing_index(parent, token)] = value
    else:
        raise _LocationError(
            TypeMismatch,
            f"cannot replace {token!r} inside a {type(parent).__name__} value",
        )
    return document


__all__ = ["apply_patch", "json_equal", "normalize_operations"]
