"""bladekit - standalone Blade templates for Python

Blade syntax compiled to Jinja2, with namespaced view lookup, an mtime-checked
compilation cache and a view factory with shared data, composers and creators.
"""

from bladekit._version import __version__
from bladekit.blade import Blade
from bladekit.cache import CompiledCache
from bladekit.compiler import BladeCompiler, DirectiveRegistry
from bladekit.config import BladeConfig
from bladekit.engine import CompilerEngine, EngineResolver, FileEngine
from bladekit.exceptions import (
    BladeError,
    CircularTemplateReferenceError,
    ConfigError,
    RenderError,
    TemplateCompileError,
    UnbalancedDirectiveError,
    ViewNotFoundError,
)
from bladekit.factory import ViewFactory
from bladekit.finder import ViewFinder
from bladekit.view import View

__all__ = [
    "__version__",
    "Blade",
    "BladeCompiler",
    "BladeConfig",
    "BladeError",
    "CircularTemplateReferenceError",
    "CompiledCache",
    "CompilerEngine",
    "ConfigError",
    "DirectiveRegistry",
    "EngineResolver",
    "FileEngine",
    "RenderError",
    "TemplateCompileError",
    "UnbalancedDirectiveError",
    "View",
    "ViewFactory",
    "ViewFinder",
    "ViewNotFoundError",
]
