"""
OCEDeclare
==========

Authoring backend for object-centric declarative process constraints:
a graph editor model, a compiler that validates and orders the graph,
and the round trip to an external evaluation engine.
"""

__version__ = "0.1.0"
