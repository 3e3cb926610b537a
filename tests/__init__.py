"""
fuelcost test suite

Tests are organized by layer:
- test_fifo_matcher.py / test_lot_reconstruction.py / test_withdrawal_costing.py: pure engine
- test_ledger_reader.py / test_inventory_lock.py: persistence and serialization
- test_concurrent_ledger_writes.py: threaded withdrawals against one warehouse
- test_consumption_service.py / test_transfer_service.py: ledger writes
- test_consumption_cost_report.py: period report
- test_diesel_api.py / test_management_commands.py: HTTP and CLI surfaces
- test_config_and_logging.py / test_timezone_and_codes.py: ambient helpers
"""
