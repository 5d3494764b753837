"""
Portal server test suite.

- unit/: pure functions and single components over the in-memory store
- integration/: entity writes, bundle materialization and the CLI wired
  together through PortalService
"""
