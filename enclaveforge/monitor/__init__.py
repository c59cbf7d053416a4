"""Terminal rendering for builds, provenance results and releases.

Modules
-------
renderer
    ``format_build_info`` turns a ``Build`` (and its dependency tree) into
    Rich-markup lines; ``BuildRenderer`` wraps those in Panels and Tables.
"""
