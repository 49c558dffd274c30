from .policy import DENIED_MODULES, GrantedModule, ModulePolicy
from .capture import CaptureSlot, CapabilityProxy, intercepting_subclass
from .loader import GrantedLoader
from .host import ScriptHost, ScriptProcess

__all__ = [
    "DENIED_MODULES",
    "GrantedModule",
    "ModulePolicy",
    "CaptureSlot",
    "CapabilityProxy",
    "intercepting_subclass",
    "GrantedLoader",
    "ScriptHost",
    "ScriptProcess",
]
