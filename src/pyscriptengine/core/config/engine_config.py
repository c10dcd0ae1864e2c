# -*- coding: utf-8 -*-
"""
脚本引擎配置模块

基于 Pydantic 的引擎配置，支持环境变量解析和多环境配置。
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ...exceptions import ConfigurationError

T = TypeVar("T", bound="EngineConfig")

# 环境变量匹配模式: ${VAR_NAME}
ENV_VAR_PATTERN = re.compile(r"\${([A-Za-z0-9_]+)}")


class EngineConfig(BaseModel):
    """
    Python脚本插件引擎配置

    1. **严格模式验证**：禁止额外字段，防止配置错误
    2. **环境变量解析**：自动解析 "${VAR_NAME}" 格式的环境变量
    3. **多环境配置**：根据 APP_ENV 环境变量加载不同环境的配置
    """

    plugins_root: Path = Field(default=Path("./plugins"), description="插件根目录")
    base_dir: Path = Field(default=Path("."), description="推导模块名所用的基准目录")
    backup_suffix: str = Field(default=".bak", min_length=1, description="入口文件备份后缀")
    language: str = Field(default="zh_CN", description="日志语言")
    lang_dir: Optional[Path] = Field(default=None, description="额外的语言文件目录")
    install_dependencies: bool = Field(default=True, description="加载时是否安装依赖")
    requirements_file: str = Field(default="requirements.txt", description="依赖清单文件名")
    pip_args: List[str] = Field(default_factory=lambda: ["--quiet"], description="pip额外参数")
    hot_reload: bool = Field(default=False, description="是否监听源码变更自动重载")
    hot_reload_delay: float = Field(default=0.5, ge=0, description="热重载防抖延迟(秒)")

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_vars(cls, data: Any) -> Any:
        """在其他验证执行前递归解析 ${VAR_NAME} 环境变量"""
        if not isinstance(data, dict):
            return data

        def _resolve(value: Any) -> Any:
            if isinstance(value, str):
                match = ENV_VAR_PATTERN.match(value)
                if not match:
                    return value
                env_var_name = match.group(1)
                env_var_value = os.getenv(env_var_name)
                if env_var_value is None:
                    raise ValueError(f"环境变量 '{env_var_name}' 未设置")
                return env_var_value
            elif isinstance(value, dict):
                return {k: _resolve(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [_resolve(v) for v in value]
            else:
                return value

        return _resolve(data)

    @property
    def resolved_plugins_root(self) -> Path:
        """插件根目录的绝对路径"""
        return self.plugins_root.expanduser().resolve()

    @property
    def resolved_base_dir(self) -> Path:
        """基准目录的绝对路径"""
        return self.base_dir.expanduser().resolve()

    @classmethod
    def load_from_dict(
        cls: Type[T],
        config_data: Dict[str, Any],
        env: Optional[str] = None,
    ) -> T:
        """
        从字典加载配置，支持环境特定的配置覆盖

        配置结构示例：
        {
            "default": {"plugins_root": "./plugins"},
            "production": {"install_dependencies": false}
        }
        不含 default 段的字典按扁平配置处理。

        Args:
            config_data: 配置字典
            env: 目标环境，为 None 时使用 os.getenv("APP_ENV", "development")

        Returns:
            配置实例

        Raises:
            ConfigurationError: 配置验证失败
        """
        if env is None:
            env = os.getenv("APP_ENV", "development")

        if "default" in config_data:
            base_config = config_data.get("default") or {}
            env_config = config_data.get(env) or {}
            merged_config = _deep_merge(base_config, env_config)
        else:
            merged_config = dict(config_data)

        try:
            return cls.model_validate(merged_config)
        except ValidationError as e:
            error_details = []
            for error in e.errors():
                field = ".".join(str(loc) for loc in error["loc"])
                error_details.append(f"{field}: {error['msg']}")
            raise ConfigurationError(f"引擎配置验证失败: {'; '.join(error_details)}") from e

    @classmethod
    def load_from_file(
        cls: Type[T], path: Union[str, Path], env: Optional[str] = None
    ) -> T:
        """从YAML文件加载配置"""
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"配置文件不存在: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"配置文件格式错误: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"配置文件顶层必须是映射: {config_path}")

        return cls.load_from_dict(data, env)

    # Pydantic v2 配置
    model_config = ConfigDict(
        extra="forbid", validate_assignment=True  # 禁止额外字段  # 赋值时验证
    )


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """深度合并两个字典，overrides 中的值会覆盖 base 中的值"""
    result = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and key in result and isinstance(result[key], dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# 全局配置实例
_global_engine_config: Optional[EngineConfig] = None


def get_engine_config() -> EngineConfig:
    """获取全局引擎配置；存在 PYSCRIPTENGINE_CONFIG 时从该文件加载"""
    global _global_engine_config
    if _global_engine_config is None:
        config_file = os.getenv("PYSCRIPTENGINE_CONFIG")
        if config_file:
            _global_engine_config = EngineConfig.load_from_file(config_file)
        else:
            _global_engine_config = EngineConfig()
    return _global_engine_config


def set_engine_config(config: EngineConfig) -> None:
    """替换全局引擎配置"""
    global _global_engine_config
    _global_engine_config = config


def reset_engine_config() -> None:
    """重置全局引擎配置（主要用于测试）"""
    global _global_engine_config
    _global_engine_config = None
