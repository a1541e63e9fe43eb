"""PayDesk request and response schemas."""
