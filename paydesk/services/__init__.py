"""
PayDesk - Services Package

Business logic for payroll calculation, entry lifecycle and period processing.
"""
