"""
Questions hub core package.

This package currently focuses on the package import subsystem. It exposes
dataclasses for extracted and parsed content, job/state definitions, storage
helpers, document extractors, the heuristic parser, the database importer and
the renumbering engine that keeps tour and question numbers consistent.
"""
