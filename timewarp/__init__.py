"""TimeWarp：会扭曲时间的专注计时器、任务生命周期与成就系统。"""

__version__ = "0.1.0"

from .cli import main
from .store import StoreConfig, TimewarpStore

__all__ = ["main", "StoreConfig", "TimewarpStore", "__version__"]
