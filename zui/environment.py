# zui/environment.py
"""Running environment of the node: kernel command line, run mode and on-disk flags."""
from __future__ import annotations

import enum
import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

CMDLINE_PATH = "/proc/cmdline"
FLAGS_DIR = "/tmp/flags"
LIMITED_CACHE_FLAG = "limited-cache"


class RunningMode(enum.Enum):
    DEV = "dev"
    QA = "qa"
    TEST = "test"
    MAIN = "main"

    @property
    def label(self) -> str:
        return {
            RunningMode.DEV: "development",
            RunningMode.QA: "qa",
            RunningMode.TEST: "testing",
            RunningMode.MAIN: "production",
        }[self]


def parse_params(content: str) -> Dict[str, List[str]]:
    """'a=1 b a=2' -> {'a': ['1', '2'], 'b': []}"""
    params: Dict[str, List[str]] = {}
    for option in content.split():
        key, sep, value = option.partition("=")
        values = params.setdefault(key, [])
        if sep:
            values.append(value)
    return params


def kernel_params(path: str = CMDLINE_PATH) -> Dict[str, List[str]]:
    try:
        content = Path(path).read_text()
    except OSError as e:
        logger.error("failed to read kernel cmdline %s: %s", path, e)
        return {}
    return parse_params(content)


def running_mode(params: Mapping[str, List[str]], env: Optional[Mapping[str, str]] = None) -> Optional[RunningMode]:
    env = os.environ if env is None else env
    if "runmode" in params:
        values = params["runmode"]
        raw = values[0] if values else "main"
    else:
        raw = env.get("ZOS_RUNMODE", "")
    try:
        return RunningMode(raw)
    except ValueError:
        return None


def check_flag(name: str, flags_dir: str = FLAGS_DIR) -> bool:
    return (Path(flags_dir) / name).exists()
