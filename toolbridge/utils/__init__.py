from toolbridge.utils.logger import setup_logging

__all__ = ["setup_logging"]
