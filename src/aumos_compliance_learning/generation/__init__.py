"""Rule-based control generation.

Modules:
- segmenter: Split regulatory text into sections
- classifier: Obligation extraction and keyword classification (default TextClassifier)
- synthesis: Candidate controls, confidence scoring and refinements
- validation: Structural and catalog-collision checks
- similarity: Cross-framework similarity (default SimilarityScorer)
"""
