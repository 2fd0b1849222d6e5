# CLI package for the IndexProof engine
"""
Command-line interface for running IndexProof locally.

Commands:
    indexproof verify      — Attest every .deb in a directory
    indexproof verify-sums — Check tarballs against a signed SHA256SUMS
"""
