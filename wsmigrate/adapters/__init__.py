"""Adapters — bindings between convergence actions and system tools.

Import concrete modules directly (``wsmigrate.adapters.registry``,
``wsmigrate.adapters.system.packages``...); the runner module is
imported by the core context, so this package stays import-free.
"""
