"""Target configuration store.

The orchestrator reads a fresh list of enabled targets every cycle and
listens for changes to invalidate its caches. Persistence is the host's
concern; ``InMemoryTargetStore`` keeps everything in memory.
"""

from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Optional

from .logging import Logger, get_logger
from .model import CaptureConfig, DetectionTarget, target_key

# Listener argument: key of the changed target, or None when many changed
ChangeListener = Callable[[Optional[str]], None]


class TargetStore:
    """Read side of the configuration used by the detection loop."""

    capture_config: CaptureConfig

    def get_enabled_targets(self) -> list[DetectionTarget]:
        raise NotImplementedError

    def get_target(self, module_id: str, target_id: str) -> Optional[DetectionTarget]:
        raise NotImplementedError

    def get_module_name(self, module_id: str) -> str:
        raise NotImplementedError

    def add_change_listener(self, callback: ChangeListener) -> None:
        raise NotImplementedError

    def remove_change_listener(self, callback: ChangeListener) -> None:
        raise NotImplementedError


@dataclass
class DetectionModule:
    """A named group of targets that can be switched on and off together."""

    module_id: str
    name: str = ""
    enabled: bool = True
    targets: dict[str, DetectionTarget] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.module_id


class InMemoryTargetStore(TargetStore):
    """Thread-safe in-memory store.

    Targets are grouped into modules; a disabled module hides all of its
    targets from ``get_enabled_targets``.
    """

    def __init__(self, capture_config: Optional[CaptureConfig] = None, logger: Optional[Logger] = None) -> None:
        self.capture_config = capture_config or CaptureConfig()
        self._modules: dict[str, DetectionModule] = {}
        self._listeners: list[ChangeListener] = []
        self._logger = logger or get_logger()
        self._lock = Lock()

    def add_module(self, module_id: str, name: str = "", enabled: bool = True) -> DetectionModule:
        with self._lock:
            module = self._modules.get(module_id)
            if module is None:
                module = DetectionModule(module_id=module_id, name=name, enabled=enabled)
                self._modules[module_id] = module
            else:
                if name:
                    module.name = name
                module.enabled = enabled
        self._notify(None)
        return module

    def remove_module(self, module_id: str) -> None:
        with self._lock:
            removed = self._modules.pop(module_id, None)
        if removed is not None:
            self._notify(None)

    def set_module_enabled(self, module_id: str, enabled: bool) -> None:
        with self._lock:
            module = self._modules.get(module_id)
            if module is None or module.enabled == enabled:
                return
            module.enabled = enabled
        self._notify(None)

    def put_target(self, target: DetectionTarget) -> None:
        """Add or replace a target; its module is created if missing."""
        with self._lock:
            module = self._modules.get(target.module_id)
            if module is None:
                module = DetectionModule(module_id=target.module_id)
                self._modules[target.module_id] = module
            module.targets[target.target_id] = target
        self._notify(target.key)

    def remove_target(self, module_id: str, target_id: str) -> None:
        with self._lock:
            module = self._modules.get(module_id)
            if module is None or module.targets.pop(target_id, None) is None:
                return
        self._notify(target_key(module_id, target_id))

    def get_enabled_targets(self) -> list[DetectionTarget]:
        with self._lock:
            return [
                target
                for module in self._modules.values()
                if module.enabled
                for target in module.targets.values()
                if target.enabled
            ]

    def get_all_targets(self) -> list[DetectionTarget]:
        with self._lock:
            return [t for module in self._modules.values() for t in module.targets.values()]

    def get_target(self, module_id: str, target_id: str) -> Optional[DetectionTarget]:
        with self._lock:
            module = self._modules.get(module_id)
            if module is None:
                return None
            return module.targets.get(target_id)

    def get_module_name(self, module_id: str) -> str:
        with self._lock:
            module = self._modules.get(module_id)
            return module.name if module is not None else module_id

    def add_change_listener(self, callback: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_change_listener(self, callback: ChangeListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, key: Optional[str]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(key)
            except Exception as e:
                self._logger.exception("Configuration listener failed", e)
