"""Knowledge-graph link generation.

Entries are reduced to small keyword bags taken from their structured
summaries, compared pairwise with Jaccard similarity, and the pairs that
clear the threshold are upserted into the ``graph_links`` table. It is a
full recompute per owner; there is no incremental state.
"""
