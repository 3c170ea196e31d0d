"""Terminal reporting for release runs.

Modules
-------
renderer
    ``ReportRenderer`` turns ``RunReport`` and enumerated build requests
    into Rich renderables for terminal display.
"""
