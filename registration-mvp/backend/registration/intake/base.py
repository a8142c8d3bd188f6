"""
BaseIntakeAdapter — 所有 queue payload Adapter 的抽象基类。

每种新的 payload 格式只需：
1. 继承 BaseIntakeAdapter
2. 实现 transform()（parse() 有 JSON 默认实现）
3. 在 factory.py 的 _build_registry() 注册一行（key 是 queue discriminator）

业务代码无需任何改动。
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError, ValidationReport
from .paths import PathReader
from .types import RegistrationCandidate

logger = logging.getLogger(__name__)


class BaseIntakeAdapter(ABC):
    """
    三步流水线：parse → transform → validate

    transform() 过程中遇到的字段错误一律 self.report.add()，不中断；
    validate() 把累计的错误一次性抛出（QueueProcessorError）。
    """

    # 子类声明自己对应的 queue discriminator（与 factory 注册键一致）
    discriminator: str = ""

    def __init__(self, raw_body: Any):
        self._raw_body = raw_body
        self._parsed = None
        self.reader = None
        self.report = ValidationReport()

    # ── 提供默认实现，子类可 override ──────────────────────────────────────

    def parse(self) -> Any:
        """bytes / str / dict → dict，并准备好 PathReader。"""
        raw = self._raw_body
        if isinstance(raw, (bytes, bytearray, str)):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                # UnicodeDecodeError 也是 ValueError
                raise ValidationError(
                    message=f"Payload is not valid JSON: {exc}",
                    code="MALFORMED_PAYLOAD",
                ) from exc
        if not isinstance(raw, dict):
            raise ValidationError(
                message="Payload must be a JSON object.",
                code="MALFORMED_PAYLOAD",
                detail={"received": type(raw).__name__},
            )
        self._parsed = raw
        self.reader = PathReader(raw)
        return raw

    # ── 必须实现 ───────────────────────────────────────────────────────────

    @abstractmethod
    def transform(self) -> RegistrationCandidate:
        """
        将 self._parsed 转换为 RegistrationCandidate。
        所有字段都要尝试；错误写进 self.report。
        """

    def validate(self, candidate: RegistrationCandidate) -> None:
        if self.report.any_errors():
            logger.info(
                "[intake] %s payload rejected with %d error(s): %s",
                self.discriminator, len(self.report), self.report.codes,
            )
        self.report.raise_if_any()

    # ── 对外统一入口 ───────────────────────────────────────────────────────

    def map(self) -> RegistrationCandidate:
        """parse → transform，不抛 mapping 错误（留在 self.report 里）。"""
        self.parse()
        return self.transform()

    def process(self) -> RegistrationCandidate:
        """parse → transform → validate，返回校验通过的 RegistrationCandidate。"""
        candidate = self.map()
        self.validate(candidate)
        return candidate
