"""Config and logging helpers."""
from .config import get_cfg_value, load_config, merge_overrides
from .logger import get_logger
