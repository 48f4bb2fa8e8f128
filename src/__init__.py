"""
SEO Data Accuracy Engine

A data accuracy service that:
1. Scores confidence in SEO metric values from multiple sources
2. Detects discrepancies between sources
3. Stores accuracy reports and project status
4. Raises and resolves accuracy alerts
"""

__version__ = "0.1.0"
