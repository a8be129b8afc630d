"""Settings, tenant configuration and logging context."""

from .settings import Settings, load_settings
from .tenant_config import CHANNELS, TenantConfig, TenantConfigService

__all__ = [
    "CHANNELS",
    "Settings",
    "TenantConfig",
    "TenantConfigService",
    "load_settings",
]
