"""
PayDesk - payroll calculation and period processing service.
"""

__version__ = "0.1.0"
