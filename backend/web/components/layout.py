"""
Layout Component for CertChain

Main layout wrapper that combines the sidebar and page content into a
complete HTML document.
"""

from typing import Optional, Dict, Any
from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Main layout component that assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        user: Optional[Dict[str, Any]] = None,
        show_nav: bool = True,
        current_path: str = "/"
    ):
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered)
            user: Current user context from the auth middleware (optional)
            show_nav: Whether to show the sidebar (default: True)
            current_path: Current URL path for active navigation highlighting
        """
        self.title = title
        self.content = content
        self.user = user
        self.show_nav = show_nav
        self.current_path = current_path

    def render(self) -> str:
        """Render the complete HTML document including sidebar."""
        nav_html = Navigation(self.user, self.current_path).render() if self.show_nav else ""
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    {self._render_head()}
</head>
<body>
    <a href="#main-content" class="skip-link">Skip to main content</a>

    {nav_html}

    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def _render_head(self) -> str:
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="description" content="CertChain - verifiable certificates">
    <title>{self.escape(self.title)} - CertChain</title>
    <link rel="stylesheet" href="/static/css/certchain.css?v=1">
    <script src="/static/js/certchain.js?v=1" defer></script>
    """

    def _render_main_inner(self) -> str:
        return f"""
        {self.content}
        <footer class="content-footer" role="contentinfo">
            <p class="text-center text-muted">
                <a href="/verify">Verify a certificate</a>
            </p>
        </footer>
        """
