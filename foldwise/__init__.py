"""
foldwise — model-agnostic cross-validation orchestration.

Subpackages
-----------
cv         Fold partitioning, the three CV orchestrators (``cv.case_cv``,
           ``cv.mixed_cv``, ``cv.select_cv``), the bias/CI estimator,
           replication and fold dispatch.
adapters   The model adapter contract and statsmodels adapters.
reporting  Text formatting and JSON export of CV results.
utils      Logging setup.
"""

__version__ = "0.3.0"
