"""
SHA Claims Workflow Service.

Claim -> Invoice -> Submission workflow for national-insurer (SHA) claims.
"""

__version__ = "1.0.0"
