# -*- coding: utf-8 -*-
"""
监控消息模块 - 文件监控发给开发服务的消息类型
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Union

from .functions import FunctionIdentity


class EventKind(Enum):
    ADD = "add"
    CHANGE = "change"
    REMOVE = "remove"


# watchdog 事件类型到消息类型的映射
EVENT_KINDS = {
    "created": EventKind.ADD,
    "modified": EventKind.CHANGE,
    "deleted": EventKind.REMOVE,
}


@dataclass(frozen=True)
class Initial:
    """开始监控时发送一次，携带当前的函数列表"""

    functions: List[FunctionIdentity]


@dataclass(frozen=True)
class FunctionEvent:
    kind: EventKind
    function: FunctionIdentity


@dataclass(frozen=True)
class InitEvent:
    kind: EventKind


WatchMessage = Union[Initial, FunctionEvent, InitEvent]
