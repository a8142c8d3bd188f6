"""
PathReader — payload 的容错读取器。

路径语法（JSONPath 的一个小子集）：
    $['patient']['given_name']      方括号 key，key 里可以带点号
    $["patient"]["personaddress^1"]
    $['observation']['other_identifier_type'][0]
    patient.given_name / $.patient.sex   点号形式

read_raw() 返回带标签的 PathValue（ABSENT / NULL / SCALAR / OBJECT / ARRAY），
调用方只在标签上分支一次，不在 mapping 逻辑里到处做 isinstance。

注意区分两种错误：
    - 语法错误  → InvalidPathExpression（不可恢复）
    - 路径不存在 → PathKind.ABSENT（可恢复，调用方据此走 fallback 或默认值）
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Optional

from ..exceptions import InvalidPathExpression, MalformedDate, PathAbsent, UnexpectedValueType

DEFAULT_DATE_FORMAT = "%Y-%m-%d"

_SEGMENT_RE = re.compile(
    r"""\[\s*'((?:[^'\\]|\\.)+)'\s*\]"""      # ['key']
    r"""|\[\s*"((?:[^"\\]|\\.)+)"\s*\]"""     # ["key"]
    r"""|\[\s*(\d+)\s*\]"""                   # [0]
    r"""|\.([^.\[\]\s'"]+)"""                 # .key
)
_ESCAPE_RE = re.compile(r"\\(.)")

_TRUE_STRINGS = {"true", "1"}
_FALSE_STRINGS = {"false", "0"}


class PathKind(Enum):
    ABSENT = "absent"
    NULL = "null"
    SCALAR = "scalar"
    OBJECT = "object"
    ARRAY = "array"


@dataclass(frozen=True)
class PathValue:
    kind: PathKind
    value: Any = None

    @classmethod
    def of(cls, value: Any) -> "PathValue":
        if value is None:
            return cls(PathKind.NULL)
        if isinstance(value, dict):
            return cls(PathKind.OBJECT, value)
        if isinstance(value, (list, tuple)):
            return cls(PathKind.ARRAY, list(value))
        return cls(PathKind.SCALAR, value)

    @property
    def is_absent(self) -> bool:
        return self.kind is PathKind.ABSENT

    def as_list(self) -> list:
        """OBJECT / SCALAR → 单元素列表，ARRAY → 原列表，ABSENT / NULL → []。"""
        if self.kind is PathKind.ARRAY:
            return self.value
        if self.kind in (PathKind.OBJECT, PathKind.SCALAR):
            return [self.value]
        return []


ABSENT = PathValue(PathKind.ABSENT)


@lru_cache(maxsize=256)
def parse_path(path: str) -> tuple:
    """把路径表达式拆成 segment 元组（str 是 key，int 是下标）。"""
    if not isinstance(path, str) or not path.strip():
        raise InvalidPathExpression(
            message=f"Invalid path expression: {path!r}.",
            detail={"path": path},
        )

    expr = path.strip()
    if expr.startswith("$"):
        expr = expr[1:]
    elif not expr.startswith((".", "[")):
        expr = "." + expr

    segments = []
    pos = 0
    while pos < len(expr):
        match = _SEGMENT_RE.match(expr, pos)
        if match is None:
            raise InvalidPathExpression(
                message=f"Invalid path expression: {path!r} (unexpected input at offset {pos}).",
                detail={"path": path, "offset": pos},
            )
        single, double, index, dotted = match.groups()
        if index is not None:
            segments.append(int(index))
        else:
            quoted = single if single is not None else double
            segments.append(_ESCAPE_RE.sub(r"\1", quoted) if quoted is not None else dotted)
        pos = match.end()
    return tuple(segments)


class PathReader:
    """对一个只读 payload 做路径解析。payload 本身不会被修改。"""

    def __init__(self, document: Any):
        self._document = document

    @property
    def document(self) -> Any:
        return self._document

    def read_raw(self, path: str) -> PathValue:
        current = self._document
        for segment in parse_path(path):
            if isinstance(segment, int):
                if not isinstance(current, list) or segment >= len(current):
                    return ABSENT
                current = current[segment]
            else:
                if not isinstance(current, dict) or segment not in current:
                    return ABSENT
                current = current[segment]
        return PathValue.of(current)

    def exists(self, path: str) -> bool:
        return not self.read_raw(path).is_absent

    def require(self, path: str) -> PathValue:
        value = self.read_raw(path)
        if value.is_absent:
            raise PathAbsent(message=f"Path not found in payload: {path}", detail={"path": path})
        return value

    def read_string(self, path: str) -> Optional[str]:
        value = self.read_raw(path)
        if value.kind in (PathKind.ABSENT, PathKind.NULL):
            return None
        if value.kind is not PathKind.SCALAR:
            raise UnexpectedValueType(
                message=f"Expected a scalar at {path}, found {value.kind.value}.",
                detail={"path": path, "kind": value.kind.value},
            )
        if isinstance(value.value, bool):
            return "true" if value.value else "false"
        return str(value.value)

    def read_date(self, path: str, fmt: str = DEFAULT_DATE_FORMAT) -> Optional[date]:
        value = self.read_raw(path)
        if value.kind in (PathKind.ABSENT, PathKind.NULL):
            return None
        if value.kind is PathKind.SCALAR and isinstance(value.value, str):
            try:
                return datetime.strptime(value.value.strip(), fmt).date()
            except ValueError:
                pass
        raise MalformedDate(
            message=f"Unable to parse date at {path}: {value.value!r} (expected format {fmt}).",
            detail={"path": path, "value": value.value if value.kind is PathKind.SCALAR else None},
        )

    def read_bool(self, path: str) -> bool:
        value = self.read_raw(path)
        if value.kind in (PathKind.ABSENT, PathKind.NULL):
            return False
        if value.kind is PathKind.SCALAR:
            if isinstance(value.value, bool):
                return value.value
            text = str(value.value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise UnexpectedValueType(
            message=f"Expected a boolean at {path}, found {value.value!r}.",
            detail={"path": path, "kind": value.kind.value},
        )
