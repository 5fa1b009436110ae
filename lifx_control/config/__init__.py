from .base import Config
from .context import ConfigContext
from .client_config import LifxControlConfig
