# Ingestion package for the IndexProof engine
"""
Readers for the engine's inputs.

Local artifacts, remote index blobs, and the stanza format both of them
share.
"""
