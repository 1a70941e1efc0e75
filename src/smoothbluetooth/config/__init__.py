"""
A simple configuration helper built on top of ConfigObj that allows configuration files to be
layered - neutral / os-specific / user, with a schema to validate the types of the config data.

The package's own settings live in bluetooth.default.cfg, validated by bluetooth.schema.cfg.
"""
