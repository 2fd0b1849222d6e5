# Scan package for the IndexProof engine
"""
Per-artifact scan orchestration and the failed-suite retry controller.
"""
