"""PayDesk API routers."""
