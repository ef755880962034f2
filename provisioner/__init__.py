"""roestbak host provisioner."""

__version__ = "0.1.0"
