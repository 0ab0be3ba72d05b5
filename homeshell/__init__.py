"""
homeshell: shell convenience helpers and a container-scoped command delegator.
"""

__version__ = "0.1.0"
