"""
Generators — render host files from the provisioning config.

Each generator module exposes a ``generate_*()`` function that returns
a ``GeneratedFile``.
"""
