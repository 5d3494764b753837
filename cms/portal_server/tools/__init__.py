"""
Operator tools for the portal server.

- bundles_cli: manual bundle/manifest regeneration and inventory
"""
