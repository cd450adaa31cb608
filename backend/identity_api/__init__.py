"""User identity service: provider reconciliation, first-party sessions and signed machine-to-machine requests."""
