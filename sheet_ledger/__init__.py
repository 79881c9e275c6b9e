"""
Sheet Ledger - Source Package

Treats a personal finance spreadsheet as the system of record: typed
records over loosely typed rows, duplicate-safe mutations with a
best-effort relational mirror, a multi-tier USD/KRW rate cache and the
derived series behind the dividend and index dashboards.

DESIGN PRINCIPLES:
1. The spreadsheet is authoritative; the mirror is a copy
2. Rows are found by natural key, never by remembered position
3. Formula columns are never written
4. Bad cells skip a row, they never abort a scan
5. Every mutation is auditable
"""

__version__ = "1.0.0"
__author__ = "Sheet Ledger Team"
