"""
Transport strategies package.

Each strategy turns a request spec into a stream handle with the same
``read_next()`` contract, whatever mechanism delivers the bytes.
"""

from __future__ import annotations
