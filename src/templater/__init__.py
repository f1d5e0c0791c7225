"""templater - reusable project templates

Philosophy:
- One template is one full snapshot: a metadata record plus one archive
- Self-contained modules with clear interfaces
- Fail fast, report the whole cause chain

The templater CLI captures a directory tree with its post-expansion commands
and later expands it into new directories.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
