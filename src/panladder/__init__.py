"""
Hierarchical Pangenome Construction

Deflates redundant loci with CD-HIT, builds an all-vs-all similarity graph,
clusters it with MCL over a ladder of identity thresholds and reinflates the
clusters back to every input locus.
"""

__version__ = "1.0.0"
