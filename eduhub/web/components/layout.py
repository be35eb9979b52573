"""
Layout components for EduHub.

The layout renders navigation for the current session state, pending toasts
and a demo banner while a demo persona is active.
"""

from typing import Optional, Sequence

from eduhub.identity_access.session import Notification, Session

from .base import Component


class Toasts(Component):
    """Render session notifications as dismissible toasts."""

    def __init__(self, notifications: Sequence[Notification]):
        self.notifications = list(notifications)

    def render(self) -> str:
        if not self.notifications:
            return ""
        items = []
        for note in self.notifications:
            css = self.classes("toast", destructive=note.variant == "destructive")
            desc = f"<p>{self.escape(note.description)}</p>" if note.description else ""
            items.append(
                f'<div class="{css}" role="status" data-kind="{self.escape(note.kind)}">'
                f"<strong>{self.escape(note.title)}</strong>{desc}</div>"
            )
        return f'<div id="toasts" aria-live="polite">{"".join(items)}</div>'


class Navigation(Component):
    def __init__(self, session: Session, current_path: str = "/"):
        self.session = session
        self.current_path = current_path

    def _link(self, href: str, label: str) -> str:
        current = ' aria-current="page"' if self.current_path == href else ""
        return f'<a href="{href}"{current}>{self.escape(label)}</a>'

    def render(self) -> str:
        links = [self._link("/", "Home"), self._link("/resources", "Resources"), self._link("/videos", "Videos")]
        if self.session.is_anonymous:
            links += [self._link("/login", "Sign in"), self._link("/register", "Register")]
        else:
            links.append(self._link("/dashboard", "Dashboard"))
            links.append(
                '<form method="post" action="/auth/logout" class="inline">'
                '<button type="submit">Sign out</button></form>'
            )
        return f'<nav id="main-nav" aria-label="Main">{"".join(links)}</nav>'


class DemoBanner(Component):
    def __init__(self, session: Session):
        self.session = session

    def render(self) -> str:
        if not self.session.is_demo:
            return ""
        role = self.escape(self.session.profile.role if self.session.profile else "")
        return (
            f'<div class="demo-banner" data-role="{role}">You are exploring EduHub in demo mode ({role}). '
            '<form method="post" action="/auth/demo/end" class="inline">'
            '<button type="submit">Exit demo</button></form></div>'
        )


class Layout(Component):
    """Main layout component that assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        session: Session,
        notifications: Sequence[Notification] = (),
        current_path: str = "/",
        refresh_seconds: Optional[float] = None,
    ):
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered)
            session: Session snapshot used for navigation and demo banner
            notifications: Toasts to show once
            current_path: Current URL path for active navigation highlighting
            refresh_seconds: Optional meta refresh interval (verification page)
        """
        self.title = title
        self.content = content
        self.session = session
        self.notifications = notifications
        self.current_path = current_path
        self.refresh_seconds = refresh_seconds

    def render(self) -> str:
        refresh = ""
        if self.refresh_seconds:
            refresh = f'<meta http-equiv="refresh" content="{int(max(1, self.refresh_seconds))}">'
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    {refresh}
    <title>{self.escape(self.title)} - EduHub</title>
</head>
<body>
    {Navigation(self.session, self.current_path).render()}
    <main id="main-content" role="main">
        {self.render_fragment()}
    </main>
</body>
</html>"""

    def render_fragment(self) -> str:
        """Return the inner markup of <main> for HTMX swaps."""
        return f"""
        {DemoBanner(self.session).render()}
        {Toasts(self.notifications).render()}
        {self.content}
        """


class LoadingPage(Component):
    """Interstitial shown while the session is still resolving."""

    def __init__(self, retry_seconds: int = 1):
        self.retry_seconds = retry_seconds

    def render(self) -> str:
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta http-equiv="refresh" content="{int(self.retry_seconds)}">
    <title>Loading - EduHub</title>
</head>
<body>
    <main id="main-content" role="main" aria-busy="true">
        <p class="loading">Loading your session…</p>
    </main>
</body>
</html>"""
