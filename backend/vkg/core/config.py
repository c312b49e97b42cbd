"""
Application Configuration
Re-exports the centralized configuration manager
"""

from .config_manager import settings, get_settings, VKGSettings as Settings

create_settings = get_settings
