from chunked_request.core.config.app_config import StreamConfig

__all__ = ["StreamConfig"]
