"""
工厂函数：根据 queue discriminator 返回对应 Adapter 类。

新增 payload 格式只需：
  1. 在 adapters.py 新建 Adapter 类
  2. 在此处 _build_registry() 加一行
  不需要修改任何业务代码。
"""

from typing import Any

from ..exceptions import ValidationError
from .base import BaseIntakeAdapter


# ── 注册表 ──────────────────────────────────────────────────────────────────
# key: queue discriminator（QueueData.discriminator）
# value: Adapter 类（未实例化）
def _build_registry() -> dict[str, type[BaseIntakeAdapter]]:
    # 延迟导入，避免循环依赖
    from .adapters import JsonRegistrationAdapter

    return {
        JsonRegistrationAdapter.discriminator: JsonRegistrationAdapter,
    }


def known_discriminators() -> list[str]:
    return list(_build_registry().keys())


def accepts(discriminator: str) -> bool:
    return discriminator in _build_registry()


def get_adapter(discriminator: str, raw_body: Any) -> BaseIntakeAdapter:
    """
    根据 discriminator 返回已实例化的 Adapter。

    Args:
        discriminator: queue 条目的类型标识，例如 "json-registration"
        raw_body:      原始 payload（bytes / str / dict）

    Raises:
        ValidationError: 未知的 discriminator
    """
    registry = _build_registry()
    adapter_cls = registry.get(discriminator)

    if adapter_cls is None:
        raise ValidationError(
            message=f"Unknown queue discriminator: {discriminator!r}.",
            code="UNKNOWN_DISCRIMINATOR",
            detail={"known_discriminators": list(registry.keys())},
        )

    return adapter_cls(raw_body=raw_body)
