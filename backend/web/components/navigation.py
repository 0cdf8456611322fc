"""
Navigation Component for CertChain

Role-aware dashboard sidebar. The menu is declared once as data
(`DEFAULT_SECTIONS`) with role-agnostic targets; the visible subset comes from
`identity_access.menu.visible_sections` and every href from
`identity_access.paths.build_path`, so the sidebar can never drift from the
route guards.
"""

from typing import Optional, Dict, Any, List, Tuple

from identity_access.domain import CANDIDATE, INSTITUTION_ADMIN, INSTRUCTOR, SUPER_ADMIN, canonical_role
from identity_access.menu import NavItem, NavSection, visible_sections
from identity_access.paths import build_path

from .base import Component

DEFAULT_SECTIONS: Tuple[NavSection, ...] = (
    NavSection(
        title="Dashboard",
        items=(
            NavItem("Dashboard", "dashboard", "🏠"),
            NavItem("My Certificates", "my-certificates", "📁"),
            NavItem("All Certificates", "certificates", "🏅", (INSTRUCTOR,)),
            NavItem("Issue Certificate", "issue", "📝", (INSTRUCTOR,)),
            NavItem("Batch Issue", "batch-issue", "📤", (INSTRUCTOR,)),
            NavItem("Batch History", "batch-upload-history", "🕑", (INSTRUCTOR,)),
            NavItem("Recipients", "recipients", "👥", (INSTRUCTOR,)),
            NavItem("Templates", "templates", "🗂", (INSTRUCTOR,)),
            NavItem("Institution", "institution", "🏛", (INSTITUTION_ADMIN,)),
            NavItem("Issuers", "issuers", "✅", (INSTITUTION_ADMIN,)),
            NavItem("Analytics", "analytics", "📊", (INSTRUCTOR,)),
            NavItem("Billing", "billing", "💳", (INSTITUTION_ADMIN,)),
            NavItem("Webhook Logs", "webhooks/logs", "🪝", (INSTITUTION_ADMIN,)),
        ),
    ),
    NavSection(
        title="Settings",
        items=(
            NavItem("Account", "settings/account", "👤"),
            NavItem("Notifications", "settings/notifications", "🔔"),
            NavItem("Privacy", "settings/privacy", "🛡"),
            NavItem("Security", "settings/security", "🔒"),
            NavItem("API Keys", "settings/api-keys", "🔑", (INSTRUCTOR,)),
            NavItem("Wallets", "settings/wallets", "👛"),
            NavItem("Webhooks", "settings/webhooks", "🪝", (INSTITUTION_ADMIN,)),
            NavItem("Integrations", "settings/integrations", "🔗", (INSTITUTION_ADMIN,)),
        ),
    ),
    NavSection(
        title="Admin",
        hide_when_empty=True,
        items=(
            NavItem("User Management", "users", "👥", (SUPER_ADMIN,)),
            NavItem("Institutions", "institutions", "🏛", (SUPER_ADMIN,)),
            NavItem("System Settings", "system", "⚙", (SUPER_ADMIN,)),
            NavItem("Audit Logs", "logs", "📜", (SUPER_ADMIN,)),
        ),
    ),
)

ROLE_LABELS: Dict[str, str] = {
    SUPER_ADMIN: "Super Admin",
    INSTITUTION_ADMIN: "Institution Admin",
    INSTRUCTOR: "Instructor",
    CANDIDATE: "Candidate",
}

ResolvedItem = Tuple[str, str, str]  # (href, title, icon)


def resolve_sections(role: Optional[str], sections=DEFAULT_SECTIONS) -> List[Tuple[str, List[ResolvedItem]]]:
    """Visible sections for `role` with concrete hrefs."""
    resolved = []
    for section in visible_sections(sections, role):
        items = [(build_path(item.target, role), item.title, item.icon) for item in section.items]
        resolved.append((section.title, items))
    return resolved


class Navigation(Component):
    """Sidebar with role-filtered sections"""

    def __init__(self, user: Optional[Dict[str, Any]] = None, current_path: str = "/"):
        """
        Args:
            user: User dict with 'role' (effective role) and 'name' keys (optional)
            current_path: The current URL path for active link highlighting
        """
        self.user = user
        self.current_path = current_path

    def render(self) -> str:
        """Render toggle button, sidebar and mobile overlay"""
        return f"""
    <button class="sidebar-toggle" data-action="sidebar-toggle" aria-label="Toggle navigation" aria-controls="sidebar" aria-expanded="false">
        <span class="sidebar-toggle-icon">☰</span>
    </button>
    {self.render_aside()}
    <div class="sidebar-overlay" data-action="sidebar-close"></div>"""

    def render_aside(self) -> str:
        """Render only the sidebar <aside> element"""
        if not self.user:
            body = self._render_public_items()
            footer = ""
        else:
            body = self._render_sections()
            footer = self._render_footer()
        return f"""
    <aside class="sidebar" id="sidebar" aria-label="Sidebar">
        <nav class="sidebar-nav" role="navigation" aria-label="Main navigation">
            <div class="sidebar-header">
                <span class="sidebar-logo" aria-hidden="true"></span>
                <span class="sidebar-title">CertChain</span>
            </div>
            <div class="sidebar-items">
                {body}
            </div>
            {footer}
        </nav>
    </aside>"""

    @property
    def role(self) -> str:
        return canonical_role((self.user or {}).get("role")) or CANDIDATE

    def _render_public_items(self) -> str:
        self._active_href = self._determine_active_href(["/verify", "/auth/login"])
        return "".join([
            self._create_nav_link("/verify", "Verify a Certificate", "🔎"),
            self._create_nav_link("/auth/login", "Sign in", "🔑"),
        ])

    def _render_sections(self) -> str:
        sections = resolve_sections(self.role)
        self._active_href = self._determine_active_href([href for _t, items in sections for href, _x, _y in items])
        groups = []
        for title, items in sections:
            links = "".join(self._create_nav_link(href, text, icon) for href, text, icon in items)
            groups.append(f"""
            <div class="sidebar-group" data-section="{self.escape(title)}">
                <div class="sidebar-group-title">{self.escape(title)}</div>
                {links}
            </div>""")
        groups.append(self._render_logout())
        return "".join(groups)

    def _render_footer(self) -> str:
        name = (self.user or {}).get("name", "")
        return f"""
            <div class="sidebar-footer">
                <div class="user-info-compact">
                    <div class="user-name">{self.escape(name)}</div>
                    <div class="user-role">{self.escape(ROLE_LABELS.get(self.role, "User"))}</div>
                </div>
            </div>"""

    def _determine_active_href(self, hrefs: List[str]) -> Optional[str]:
        """Pick the single active href using best prefix match."""
        path = self.current_path or "/"
        best: Optional[str] = None
        best_len = 0
        for href in hrefs:
            if href == path:
                return href
            if path.startswith(href.rstrip("/") + "/") and len(href) > best_len:
                best = href
                best_len = len(href)
        return best

    def _create_nav_link(self, href: str, text: str, icon: str = "") -> str:
        is_active = href == getattr(self, "_active_href", None)
        icon_html = f'<span class="nav-icon">{icon}</span>' if icon else ""
        attrs = self.attributes(
            href=href,
            class_=self.classes("sidebar-link", active=is_active),
            aria_current="page" if is_active else None,
        )
        return f"""
                <a {attrs}>
                    {icon_html}
                    <span class="nav-text">{self.escape(text)}</span>
                </a>"""

    def _render_logout(self) -> str:
        """Logout clears the cookie, so it is a plain link with no aria-current state."""
        return """
            <a href="/auth/logout" class="sidebar-link sidebar-logout" aria-label="Sign out">
                <span class="nav-icon">🚪</span>
                <span class="nav-text">Sign out</span>
            </a>"""
