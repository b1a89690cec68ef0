"""
apiscout - discover and replay the JSON APIs behind logged-in web apps
"""

__version__ = "1.0.0"
