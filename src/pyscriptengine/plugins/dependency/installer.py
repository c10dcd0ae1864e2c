# -*- coding: utf-8 -*-
"""
插件依赖安装器

插件目录下存在依赖清单（默认 requirements.txt）时，加载前用当前解释器的
pip 安装其中的依赖。安装失败只记录日志，不阻止加载：缺失的依赖会在
导入阶段以导入错误的形式暴露出来。
"""

import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ...logger import KeyedLogger


class DependencyInstaller:
    """按插件目录中的依赖清单安装依赖"""

    def __init__(
        self,
        plugins_root: Union[str, Path] = "./plugins",
        requirements_file: str = "requirements.txt",
        pip_args: Optional[Sequence[str]] = None,
        enabled: bool = True,
        timeout: Optional[float] = None,
        logger: Optional[KeyedLogger] = None,
    ):
        self.plugins_root = Path(plugins_root)
        self.requirements_file = requirements_file
        self.pip_args: List[str] = list(pip_args or [])
        self.enabled = enabled
        self.timeout = timeout
        self._keyed = logger or KeyedLogger(__name__)

    def requirements_for(self, plugin_id: str) -> Optional[Path]:
        """返回插件的依赖清单路径，不存在时返回None"""
        path = self.plugins_root / plugin_id / self.requirements_file
        return path if path.is_file() else None

    def build_command(self, requirements: Path) -> List[str]:
        return [
            sys.executable,
            "-m",
            "pip",
            "install",
            "-r",
            str(requirements),
            *self.pip_args,
        ]

    def install(self, plugin_id: str) -> bool:
        """
        安装插件依赖

        Returns:
            依赖是否就绪；未启用或没有依赖清单时返回True
        """
        if not self.enabled:
            return True

        requirements = self.requirements_for(plugin_id)
        if requirements is None:
            return True

        self._keyed.info("engine.python.plugin.pip.loading", [plugin_id])
        try:
            result = subprocess.run(
                self.build_command(requirements),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self._keyed.error("engine.python.plugin.pip.failed", [plugin_id, e])
            return False

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            self._keyed.error(
                "engine.python.plugin.pip.failed",
                [plugin_id, output or f"exit code {result.returncode}"],
            )
            return False

        self._keyed.info("engine.python.plugin.pip.loaded", [plugin_id])
        return True
