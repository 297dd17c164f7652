"""
stallguard - keeps a long-running worker alive by watching its log output.

The supervisor counts completion markers in the worker's log over a fixed
window, restarts the worker when the count stops growing, and posts escalating
alerts to a webhook when restarts keep happening.
"""

__version__ = "0.1.0"
