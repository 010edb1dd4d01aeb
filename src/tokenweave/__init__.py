"""
tokenweave: merge, resolve and permute DTCG design-token documents.

Typical use::

    from tokenweave import TokenFileReader, generate_all, load_manifest

    manifest = load_manifest("tokens/manifest.json")
    for permutation in generate_all(manifest, TokenFileReader("tokens")):
        print(permutation.id, permutation.files)
"""

from ._version import get_version
from .core import *  # noqa: F403
from .core import __all__ as _core_all

__version__ = get_version()

__all__ = ["__version__", *_core_all]
