"""
Filter matching and update operators for JSON documents.

Filters are dicts of dotted path -> condition. A condition is either a plain
value (equality) or a dict of operators ($eq, $ne, $in, $nin, $exists, $gt,
$gte, $lt, $lte). Paths that cross a list match any element, and a plain value
compared against a list matches membership, so {"students": email} selects
documents whose student set holds that email.

Updates are dicts of operator -> {path: value} with $set, $inc, $push,
$addToSet and $unset. A "$" path segment addresses the first element of the
array that the filter matched, e.g.
{"$inc": {"assignments.$.submission_count": 1}} together with the filter
{"assignments._id": assignment_id}.

These run in memory against the locked row inside update_if_match. find_many
filters in SQL instead (app.db.sql_filters).
"""

import copy
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

Filter = Dict[str, Any]
Update = Dict[str, Dict[str, Any]]

POSITIONAL = "$"


def _split(path: str) -> List[str]:
    return path.split(".")


def _resolve(document: Any, parts: Sequence[str]) -> List[Any]:
    """All values reachable at `parts`; lists along the way fan out to their elements."""
    values = [document]
    for part in parts:
        reached = []
        for value in values:
            if isinstance(value, dict):
                if part in value:
                    reached.append(value[part])
            elif isinstance(value, list):
                if part.isdigit():
                    index = int(part)
                    if index < len(value):
                        reached.append(value[index])
                else:
                    for item in value:
                        if isinstance(item, dict) and part in item:
                            reached.append(item[part])
        values = reached
    return values


def _candidates(values: Iterable[Any]) -> List[Any]:
    out = []
    for value in values:
        out.append(value)
        if isinstance(value, list):
            out.extend(value)
    return out


def _compare(op: Callable[[Any, Any], bool], candidates: List[Any], operand: Any) -> bool:
    for candidate in candidates:
        try:
            if op(candidate, operand):
                return True
        except TypeError:
            continue
    return False


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(k.startswith("$") for k in condition)


def _check(values: List[Any], condition: Any) -> bool:
    candidates = _candidates(values)
    if not _is_operator_dict(condition):
        return condition in candidates
    for op, operand in condition.items():
        if op == "$eq":
            ok = operand in candidates
        elif op == "$ne":
            ok = operand not in candidates
        elif op == "$in":
            ok = any(c in operand for c in candidates)
        elif op == "$nin":
            ok = not any(c in operand for c in candidates)
        elif op == "$exists":
            ok = bool(values) == bool(operand)
        elif op == "$gt":
            ok = _compare(lambda a, b: a > b, candidates, operand)
        elif op == "$gte":
            ok = _compare(lambda a, b: a >= b, candidates, operand)
        elif op == "$lt":
            ok = _compare(lambda a, b: a < b, candidates, operand)
        elif op == "$lte":
            ok = _compare(lambda a, b: a <= b, candidates, operand)
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


def matches(document: Dict[str, Any], filter: Optional[Filter]) -> bool:
    """True when every condition of `filter` holds for `document`. An empty filter matches."""
    if not filter:
        return True
    return all(_check(_resolve(document, _split(path)), condition) for path, condition in filter.items())


def _positional_index(items: List[Any], array_path: str, filter: Optional[Filter]) -> int:
    """Index of the first element of `items` satisfying the filter's conditions under `array_path`."""
    prefix = array_path + "."
    sub_filter = {path[len(prefix):]: cond for path, cond in (filter or {}).items() if path.startswith(prefix)}
    if not sub_filter:
        raise ValueError(f"Positional update on '{array_path}' needs a filter on its elements")
    for index, item in enumerate(items):
        if isinstance(item, dict) and matches(item, sub_filter):
            return index
    raise ValueError(f"Positional update on '{array_path}' found no matching element")


Container = Union[Dict[str, Any], List[Any]]


def _locate(document: Dict[str, Any], path: str, filter: Optional[Filter]) -> Tuple[Container, Union[str, int]]:
    """Parent container and key for writing `path`, creating intermediate objects as needed."""
    parts = _split(path)
    container: Container = document
    walked: List[str] = []
    for position, part in enumerate(parts):
        last = position == len(parts) - 1
        if isinstance(container, list):
            if part == POSITIONAL:
                key: Union[str, int] = _positional_index(container, ".".join(walked), filter)
            elif part.isdigit():
                key = int(part)
            else:
                raise ValueError(f"Cannot address field '{part}' of an array in '{path}'")
            if key >= len(container):
                raise ValueError(f"Array index out of range in '{path}'")
        else:
            if part == POSITIONAL:
                raise ValueError(f"Positional operator must follow an array in '{path}'")
            key = part
        if last:
            return container, key
        if isinstance(container, dict) and key not in container:
            container[key] = {}
        container = container[key]
        walked.append(part)
        if not isinstance(container, (dict, list)):
            raise ValueError(f"Cannot traverse scalar at '{'.'.join(walked)}'")
    raise ValueError("Empty update path")


def _read(container: Container, key: Union[str, int], default: Any) -> Any:
    if isinstance(container, dict):
        return container.get(key, default)
    return container[key]


def _op_set(container: Container, key: Union[str, int], value: Any) -> None:
    container[key] = copy.deepcopy(value)


def _op_inc(container: Container, key: Union[str, int], value: Any) -> None:
    current = _read(container, key, 0)
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        raise ValueError(f"Cannot increment non-numeric field '{key}'")
    container[key] = current + value


def _target_list(container: Container, key: Union[str, int]) -> List[Any]:
    current = _read(container, key, None)
    if current is None:
        current = []
        container[key] = current
    if not isinstance(current, list):
        raise ValueError(f"Field '{key}' is not an array")
    return current


def _op_push(container: Container, key: Union[str, int], value: Any) -> None:
    _target_list(container, key).append(copy.deepcopy(value))


def _op_add_to_set(container: Container, key: Union[str, int], value: Any) -> None:
    items = _target_list(container, key)
    if value not in items:
        items.append(copy.deepcopy(value))


def _op_unset(container: Container, key: Union[str, int], value: Any) -> None:
    if isinstance(container, dict):
        container.pop(key, None)
    else:
        container[key] = None


_UPDATE_OPERATORS: Dict[str, Callable[[Container, Union[str, int], Any], None]] = {
    "$set": _op_set,
    "$inc": _op_inc,
    "$push": _op_push,
    "$addToSet": _op_add_to_set,
    "$unset": _op_unset,
}


def apply_update(document: Dict[str, Any], update: Update, filter: Optional[Filter] = None) -> Dict[str, Any]:
    """Return a copy of `document` with `update` applied. The input is not modified."""
    result = copy.deepcopy(document)
    for op, fields in update.items():
        handler = _UPDATE_OPERATORS.get(op)
        if handler is None:
            raise ValueError(f"Unsupported update operator: {op}")
        for path, value in fields.items():
            if path == "_id" or path.startswith("_id."):
                raise ValueError("Document key is immutable")
            container, key = _locate(result, path, filter)
            handler(container, key, value)
    return result

