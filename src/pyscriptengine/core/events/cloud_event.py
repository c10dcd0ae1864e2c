# -*- coding: utf-8 -*-
"""
CloudEvent 事件模型

事件总线上流转的所有事件都使用该模型，字段取 CNCF CloudEvents v1.0
的必需属性和少量可选属性，另加一个分发优先级。
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class CloudEvent(BaseModel):
    """
    云事件

    参考: https://github.com/cloudevents/spec/blob/v1.0.2/cloudevents/spec.md
    """

    specversion: str = "1.0"
    type: str = Field(..., description="事件类型, 如 'com.pyscriptengine.plugin.loaded'")
    source: str = Field(..., description="产生事件的组件")
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    datacontenttype: str = "application/json"
    subject: Optional[str] = None
    data: Any = None

    # 1最高，10最低
    priority: int = Field(default=5, ge=1, le=10)

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    @field_serializer("time")
    def serialize_time(self, value: datetime) -> str:
        return value.isoformat()

    @field_validator("type", "source")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("事件类型和事件源不能为空")
        return v

    def __str__(self) -> str:
        return f"CloudEvent(type={self.type}, source={self.source}, id={self.id})"
