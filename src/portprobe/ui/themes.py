"""
Theme management for portprobe output.
"""

from typing import List

from rich.theme import Theme

THEMES = {
    "matrix": {
        "primary": "bright_green",
        "open": "bright_green",
        "closed": "bright_red",
        "service": "bright_cyan",
        "banner": "bright_black",
        "warning": "bright_yellow",
        "error": "bright_red",
        "info": "bright_cyan",
        "highlight": "bright_white",
        "muted": "bright_black",
    },
    "classic": {
        "primary": "cyan",
        "open": "green",
        "closed": "red",
        "service": "cyan",
        "banner": "bright_black",
        "warning": "yellow",
        "error": "red",
        "info": "cyan",
        "highlight": "bold white",
        "muted": "bright_black",
    },
    "minimal": {
        "primary": "white",
        "open": "bold white",
        "closed": "white",
        "service": "white",
        "banner": "bright_black",
        "warning": "yellow",
        "error": "red",
        "info": "white",
        "highlight": "bright_white",
        "muted": "bright_black",
    },
}


def load_theme(theme_name: str = "matrix") -> Theme:
    """Load the specified theme.

    Args:
        theme_name: Name of the theme to load

    Returns:
        A Rich Theme object
    """
    # Default to matrix theme if requested theme doesn't exist
    theme_data = THEMES.get(theme_name.lower(), THEMES["matrix"])

    theme_styles = {}
    for style_name, style_value in theme_data.items():
        theme_styles[style_name] = style_value
        theme_styles[f"bold_{style_name}"] = f"bold {style_value}"

    return Theme(theme_styles)


def get_available_themes() -> List[str]:
    """Get a list of available theme names."""
    return list(THEMES)
