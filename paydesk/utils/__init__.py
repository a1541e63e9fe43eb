"""PayDesk utilities."""
