# EduHub Component System
# Pure Python components for server-rendered HTML

from .base import Component
from .layout import Layout, LoadingPage, Toasts

__all__ = ["Component", "Layout", "LoadingPage", "Toasts"]
