# src/bundlehost/services/script_host/loader.py
from __future__ import annotations
import importlib
import logging
import sys
import types
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from bundlehost.services.script_host.capture import CapabilityProxy, CaptureSlot
from bundlehost.services.script_host.policy import GrantedModule, ModulePolicy, compile_script

_log = logging.getLogger("bundlehost.script_host.loader")


def _resolve_name(name: str, package: Optional[str], level: int) -> str:
    if not package:
        raise ImportError("attempted relative import with no known parent package")
    bits = package.rsplit(".", level - 1)
    if len(bits) < level:
        raise ImportError("attempted relative import beyond top-level package")
    base = bits[0]
    return f"{base}.{name}" if name else base


class GrantedLoader:
    """
    ``__import__`` replacement for bundle scripts.

    Resolution order:
      1. denied roots -> ImportError
      2. the intercepted capability -> CapabilityProxy
      3. modules next to the entry script (private table, never sys.modules)
      4. interpreter modules the policy grants, handed out as GrantedModule views
    Anything else is an ImportError.
    """

    def __init__(
        self,
        root: Path,
        *,
        intercept_module: str,
        intercept_export: str,
        slot: CaptureSlot,
        policy: Optional[ModulePolicy] = None,
    ) -> None:
        self.root = Path(root)
        self.intercept_module = intercept_module
        self.intercept_export = intercept_export
        self.slot = slot
        self.policy = policy or ModulePolicy()
        self.builtins: dict[str, Any] = {}
        self._modules: dict[str, types.ModuleType] = {}
        self._views: Dict[str, GrantedModule] = {}
        self._proxy: Optional[CapabilityProxy] = None

    def bind(self, restricted_builtins: dict[str, Any]) -> None:
        self.builtins = restricted_builtins

    def __call__(
        self,
        name: str,
        globals: Optional[Mapping[str, Any]] = None,
        locals: Optional[Mapping[str, Any]] = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> Any:
        if level > 0:
            package = (globals or {}).get("__package__")
            name = _resolve_name(name, package, level)

        root = name.partition(".")[0]
        if root in self.policy.denied:
            raise ImportError(f"module '{name}' is not available to bundle scripts", name=name)

        if name == self.intercept_module:
            return self._capability()

        module = self._load_local(name)
        if module is not None:
            if not fromlist:
                return self._modules[root]
            if hasattr(module, "__path__"):
                for item in fromlist:
                    if item != "*" and not hasattr(module, item):
                        self._load_local(f"{name}.{item}")
            return module

        if level > 0:
            raise ImportError(f"No module named '{name}' in bundle", name=name)
        return self._import_granted(name, fromlist)

    # ---------- interpreter modules ----------

    def _import_granted(self, name: str, fromlist: Sequence[str]) -> GrantedModule:
        self.policy.require(name)
        real = importlib.import_module(name)
        if not fromlist:
            # `import a.b` binds `a`; `a.b` is then reached through the view
            return self._view(importlib.import_module(name.partition(".")[0]))
        if hasattr(real, "__path__"):
            self._prepare_fromlist(real, fromlist)
        return self._view(real)

    def _prepare_fromlist(self, package: types.ModuleType, fromlist: Sequence[str]) -> None:
        # a failed attribute lookup in `from pkg import x` falls back to sys.modules,
        # so submodules are imported (granted) or refused (not granted) up front
        for item in fromlist:
            if item == "*":
                continue
            sub = f"{package.__name__}.{item}"
            if self.policy.allows(sub):
                try:
                    importlib.import_module(sub)
                except ModuleNotFoundError:
                    pass
            elif sub in sys.modules or isinstance(getattr(package, item, None), types.ModuleType):
                raise ImportError(f"module '{sub}' is not available to bundle scripts", name=sub)

    def _view(self, module: types.ModuleType) -> GrantedModule:
        view = self._views.get(module.__name__)
        if view is None:
            view = GrantedModule(module, self._grant)
            self._views[module.__name__] = view
        return view

    def _grant(self, module: types.ModuleType, alias: str) -> Optional[types.ModuleType]:
        if module.__name__ == self.intercept_module:
            return self._capability()
        if self.policy.allows(module.__name__) or self.policy.allows(alias):
            return self._view(module)
        return None

    def _capability(self) -> CapabilityProxy:
        if self._proxy is None:
            target = importlib.import_module(self.intercept_module)
            self._proxy = CapabilityProxy(target, self.intercept_export, self.slot, self._grant)
        return self._proxy

    # ---------- bundle-local modules ----------

    def _find(self, name: str, search: Path) -> Optional[tuple[Path, bool]]:
        leaf = name.rpartition(".")[2]
        pkg_init = search / leaf / "__init__.py"
        if pkg_init.is_file():
            return pkg_init, True
        mod_file = search / f"{leaf}.py"
        if mod_file.is_file():
            return mod_file, False
        return None

    def _load_local(self, name: str) -> Optional[types.ModuleType]:
        if name in self._modules:
            return self._modules[name]
        parent_name, _, _ = name.rpartition(".")
        if parent_name:
            parent = self._load_local(parent_name)
            if parent is None or not hasattr(parent, "__path__"):
                return None
            search = Path(parent.__path__[0])
        else:
            search = self.root
        found = self._find(name, search)
        if found is None:
            return None
        path, is_pkg = found

        module = types.ModuleType(name)
        module.__file__ = str(path)
        module.__builtins__ = self.builtins  # type: ignore[attr-defined]
        if is_pkg:
            module.__path__ = [str(path.parent)]  # type: ignore[attr-defined]
            module.__package__ = name
        else:
            module.__package__ = parent_name
        self._modules[name] = module
        try:
            exec(compile_script(path), module.__dict__)
        except BaseException:
            self._modules.pop(name, None)
            raise
        if parent_name:
            setattr(self._modules[parent_name], name.rpartition(".")[2], module)
        _log.debug("loader.local", extra={"extra": {"module": name, "file": str(path)}})
        return module
