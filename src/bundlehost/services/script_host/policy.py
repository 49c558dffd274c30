# src/bundlehost/services/script_host/policy.py
from __future__ import annotations
import ast
import types
import weakref
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from bundlehost.config import const
from bundlehost.services.errors import ScriptHostError

# host internals and escape hatches out of the restricted builtins
DENIED_MODULES: frozenset[str] = frozenset({"bundlehost", "builtins", "sys", "importlib"})

# introspection paths from a granted object back to real module globals or frames
DENIED_ATTRIBUTES: frozenset[str] = frozenset(
    {
        "__globals__",
        "__builtins__",
        "__code__",
        "__closure__",
        "__self__",
        "__subclasses__",
        "__bases__",
        "__base__",
        "__mro__",
        "__getattribute__",
        "__loader__",
        "__spec__",
        "__traceback__",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_back",
        "gi_frame",
        "cr_frame",
        "ag_frame",
        "tb_frame",
    }
)

_DUNDER_DENIED = frozenset(a for a in DENIED_ATTRIBUTES if a.startswith("__"))


class ModulePolicy:
    """
    Which module names a bundle script may import.
    Grants are exact names or "pkg.*" (the package and all of its submodules);
    denied roots always win.
    """

    def __init__(self, granted: Iterable[str] = const.GRANTED_MODULES, denied: Iterable[str] = DENIED_MODULES) -> None:
        self.granted = frozenset(granted)
        self.denied = frozenset(denied)

    def allows(self, name: str) -> bool:
        root = name.partition(".")[0]
        if root in self.denied:
            return False
        if name in self.granted:
            return True
        return f"{root}.*" in self.granted

    def require(self, name: str) -> None:
        if not self.allows(name):
            raise ImportError(f"module '{name}' is not available to bundle scripts", name=name)


def _violation(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Attribute) and node.attr in DENIED_ATTRIBUTES:
        return node.attr
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        for name in _DUNDER_DENIED:
            if name in node.value:
                return name
    return None


def compile_script(path: Path) -> types.CodeType:
    """Compiles a bundle source file, rejecting introspection of denied attributes."""
    source = path.read_text(encoding="utf-8")
    tree = ast.parse(source, filename=str(path))
    for node in ast.walk(tree):
        name = _violation(node)
        if name is not None:
            raise ScriptHostError(f"{path.name}:{getattr(node, 'lineno', '?')}: access to '{name}' is not allowed")
    return compile(tree, str(path), "exec")


def guarded_getattr(obj: Any, name: str, *default: Any) -> Any:
    if isinstance(name, str) and name in DENIED_ATTRIBUTES:
        raise AttributeError(f"access to '{name}' is not allowed")
    return getattr(obj, name, *default)


ModuleGrant = Callable[[types.ModuleType, str], Optional[types.ModuleType]]

# proxy -> (real module, grant); kept off the proxy so the script cannot read it back
_BOUND: "weakref.WeakKeyDictionary[types.ModuleType, tuple[types.ModuleType, ModuleGrant]]" = weakref.WeakKeyDictionary()


class GrantedModule(types.ModuleType):
    """
    Read-only view of a real module handed to bundle scripts. Plain attributes
    pass through; module-valued attributes are re-checked against the policy,
    so ``os.sys`` or ``threading._sys`` do not lead back to the interpreter.
    """

    def __init__(self, target: types.ModuleType, grant: ModuleGrant) -> None:
        super().__init__(target.__name__, target.__doc__)
        _BOUND[self] = (target, grant)

    def __getattr__(self, name: str) -> Any:
        target, grant = _BOUND[self]
        if name in DENIED_ATTRIBUTES:
            raise AttributeError(f"access to '{name}' is not allowed")
        value = getattr(target, name)
        if isinstance(value, types.ModuleType):
            granted = grant(value, f"{target.__name__}.{name}")
            if granted is None:
                raise AttributeError(f"module '{target.__name__}' has no attribute '{name}'")
            return granted
        return value

    def __dir__(self) -> list[str]:
        return dir(_BOUND[self][0])
