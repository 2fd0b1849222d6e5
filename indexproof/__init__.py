# IndexProof: Index Matching & Provenance Engine

"""
Core invariant: an artifact is attested only when its name, version and
content hash appear together in one record of an index whose signature
has been verified this run.

Partial matches are evidence, never attestation.
"""

__version__ = "0.1.0"
