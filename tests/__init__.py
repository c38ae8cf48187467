"""External table replication test suite.

Test organization:
- unit/test_location.py, test_rebase.py: location encoding and rebasing
- unit/test_manifest.py: external table manifest format
- unit/test_reconciler.py: replica state transitions per event
- unit/test_coordinator.py: dump/load sequencing and locking
- unit/test_external_table_scenarios.py: end-to-end replication scenarios
- unit/test_cli.py: the repl command
"""
