# Matching package for the IndexProof engine
"""
Exact tuple matching and non-match classification.
"""
