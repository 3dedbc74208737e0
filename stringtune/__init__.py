"""stringtune package initializer.

The pitch pipeline lives in ``stringtune.pipeline``; the HTTP surface in
``stringtune.main``.  Nothing is exported from here.
"""
