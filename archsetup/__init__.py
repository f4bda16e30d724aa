"""archsetup — idempotent, declarative Arch Linux provisioning."""

__version__ = "0.1.0"
