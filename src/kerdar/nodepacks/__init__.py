"""
Node packs bundled with kerdar.

Each pack exposes register_nodes() -> (NodePackManifest, {type: class})
and is advertised under the "kerdar.nodepacks" entry-point group.
"""
