# This file makes tests a Python package

# Install narrowly targeted warning filters for known upstream/library warnings.
import warnings as _warnings

# execnet/xdist on Windows may emit a spurious unclosed ProactorEventLoop warning
_warnings.filterwarnings(
    "ignore",
    category=ResourceWarning,
    message=r"unclosed event loop <ProactorEventLoop.*",
)
