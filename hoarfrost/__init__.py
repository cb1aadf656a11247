"""Hoarfrost static site generator.

This package turns a directory of content files into a site, either as a
one-shot build or through a live preview server that re-resolves content as
files change.

Content files are resolved into a tree of content plugin instances by
registered content plugins. Generators add synthetic content on top of that
tree, and views render each leaf of the merged tree into output files or HTTP
responses.

The main entry point is the CLI module, which provides the ``build`` and
``preview`` commands.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
