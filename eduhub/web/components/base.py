"""
Base component class for EduHub pages.

Pure Python HTML generation keeps the few server-rendered pages free of a
template engine; escaping is explicit and central.
"""

from typing import Optional
import html


class Component:
    """Base class for all UI components."""

    def render(self) -> str:
        raise NotImplementedError("Subclasses must implement render()")

    @staticmethod
    def escape(text: Optional[str]) -> str:
        """Escape HTML entities; None renders as empty string."""
        return html.escape(str(text)) if text is not None else ""

    @staticmethod
    def classes(*args: str, **conditionals: bool) -> str:
        """Build a CSS class string, e.g. classes("toast", destructive=True)."""
        classes = list(args)
        classes.extend(key for key, value in conditionals.items() if value)
        return " ".join(classes)
