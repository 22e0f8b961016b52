"""tika: Things I Know About.

Indexes a vault of Markdown + front-matter notes and answers fuzzy queries
against the persisted index.
"""

__version__ = "0.1.0"
