"""
ShelfScout interaction core.

Hands-free visual assistant loop: listen, photograph, ask the workflow
backend, speak the answer, and keep guiding in continuous mode. Any
single tap interrupts.
"""

__version__ = "0.1.0"
